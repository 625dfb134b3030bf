"""
Quick start script for local development.
Starts the API with auto-reload against the configured DATABASE_URL (SQLite by default).
"""
import subprocess
import sys


def main():
    """Starts the development server."""
    print("Collections engine - Initialization\n")

    print("Starting FastAPI server on port 8000...")
    print("Documentation: http://localhost:8000/docs")
    print("Health check:  http://localhost:8000/health\n")

    try:
        subprocess.run(
            [sys.executable, "-m", "uvicorn", "cobranca.main:app", "--reload", "--host", "0.0.0.0", "--port", "8000"],
            check=True
        )
    except KeyboardInterrupt:
        print("\n\nServer stopped. Goodbye!")
    except subprocess.CalledProcessError as e:
        print(f"\nError starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

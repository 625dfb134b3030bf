"""
Business logic for installment calculation.
Implements the Price table (fixed-payment annuity) and the Total Effective Cost (CET).
"""
from datetime import date
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Dict, List, Optional

from cobranca.core.logger import logger
from cobranca.core.utils import add_months, round_currency
from cobranca.simulacao.schemas import LoanTerms, Schedule

ZERO = Decimal("0")
ZERO_SCHEDULE = Schedule(installment_amount=ZERO, total_amount=ZERO)
PRECISION = 28


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Best-effort numeric parsing. Accepts pt-BR strings ("1.234,56"). Returns None when unparseable."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        value = value.strip()
        if "," in value:
            value = value.replace(".", "").replace(",", ".")
    elif isinstance(value, float):
        value = str(value)

    try:
        parsed = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None

    return parsed if parsed.is_finite() else None


def compute_schedule(principal: Any, term_count: Any, monthly_rate_percent: Any = 0) -> Schedule:
    """
    Calculates the fixed installment and total payable for a loan.
    Never raises: invalid input degrades to a zero schedule so live forms can
    recalculate on every keystroke.

    Formula: PMT = PV * [i * (1+i)^n] / [(1+i)^n - 1], with i = rate / 100

    - principal <= 0 or term_count <= 0 -> (0, 0)
    - rate <= 0 (no interest) -> straight-line split, total = principal
    """
    value = _to_decimal(principal)
    term = _to_decimal(term_count)
    rate = ZERO if monthly_rate_percent in (None, "") else _to_decimal(monthly_rate_percent)

    if value is None or term is None or rate is None:
        return ZERO_SCHEDULE
    if term != term.to_integral_value():
        return ZERO_SCHEDULE
    if value <= 0 or term <= 0:
        return ZERO_SCHEDULE

    n = int(term)

    try:
        with localcontext() as ctx:
            ctx.prec = PRECISION
            i = rate / 100
            if i <= 0:
                return Schedule(installment_amount=value / n, total_amount=value)

            factor = (1 + i) ** n
            if factor == 1:
                # Rate too small to register at this precision
                return Schedule(installment_amount=value / n, total_amount=value)

            installment = value * (i * factor) / (factor - 1)
            return Schedule(installment_amount=installment, total_amount=installment * n)
    except ArithmeticError:
        logger.warning(f"Schedule calculation overflow: principal={value}, term={n}, rate={rate}")
        return ZERO_SCHEDULE


def schedule_for(terms: LoanTerms) -> Schedule:
    """Schedule for already validated terms."""
    return compute_schedule(terms.principal, terms.term_count, terms.monthly_rate_percent)


def build_amortization_table(terms: LoanTerms, first_due_date: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Generates the month-by-month amortization breakdown (interest, principal, remaining balance).
    Values are rounded to cents per row; the underlying balance is carried unrounded.
    """
    schedule = schedule_for(terms)
    rate = terms.monthly_rate_percent / 100
    installment = schedule.installment_amount
    balance = terms.principal

    table: List[Dict[str, Any]] = []
    for month in range(1, terms.term_count + 1):
        interest = balance * rate
        principal = installment - interest
        balance -= principal

        # Avoid negative balance due to rounding in the last period
        if balance < Decimal("0.01"):
            balance = ZERO

        table.append({
            "month": month,
            "due_date": add_months(first_due_date, month - 1) if first_due_date else None,
            "installment": round_currency(installment),
            "interest": round_currency(interest),
            "principal": round_currency(principal),
            "balance": round_currency(balance),
        })

    return table


def annual_effective_cost(terms: LoanTerms, schedule: Schedule) -> Decimal:
    """Annualized CET (%) derived from the total paid over the principal."""
    if schedule.total_amount <= terms.principal:
        return ZERO

    with localcontext() as ctx:
        ctx.prec = PRECISION
        monthly = (schedule.total_amount / terms.principal) ** (Decimal(1) / terms.term_count) - 1
        return ((1 + monthly) ** 12 - 1) * 100


def simulate(terms: LoanTerms, first_due_date: Optional[date] = None) -> Dict[str, Any]:
    """
    Full Price-table simulation.
    Returns installment, total payable, total interest, annualized CET and the amortization table.
    """
    schedule = schedule_for(terms)
    table = build_amortization_table(terms, first_due_date)
    annual_cet = annual_effective_cost(terms, schedule)

    logger.info(
        f"Simulation calculated: principal={terms.principal}, installments={terms.term_count}, "
        f"installment={round_currency(schedule.installment_amount)}"
    )

    return {
        "installment_amount": round_currency(schedule.installment_amount),
        "total_amount": round_currency(schedule.total_amount),
        "total_interest": round_currency(schedule.total_amount - terms.principal),
        "annual_cet": round_currency(annual_cet),
        "table": table,
    }

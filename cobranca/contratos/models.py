"""
Data models for customers and contracts.
The engine only reads customers; contracts own the installment schedule.
"""
import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cobranca.core.database import Base, get_enum_values


class ContractStatus(str, enum.Enum):
    """Enumeration of contract lifecycle states."""
    DRAFT = "RASCUNHO"
    ACTIVE = "ATIVO"
    CLOSED = "ENCERRADO"
    CANCELED = "CANCELADO"


class Customer(Base):
    """Tenant-owned customer. Only the display name matters to the engine."""

    __tablename__ = "clientes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    company_id: Mapped[str] = mapped_column("empresa_id", String(36), nullable=False, index=True)
    full_name: Mapped[Optional[str]] = mapped_column("nome_completo", String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column("criado_em", DateTime, default=lambda: datetime.now(timezone.utc))
    deleted_at: Mapped[Optional[datetime]] = mapped_column("excluido_em", DateTime, nullable=True)

    def __repr__(self):
        return f"<Customer(id={self.id}, company_id={self.company_id})>"


class Contract(Base):
    """Entity representing a loan/financing contract and the terms its schedule was derived from."""

    __tablename__ = "contratos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    company_id: Mapped[str] = mapped_column("empresa_id", String(36), nullable=False, index=True)
    customer_id: Mapped[str] = mapped_column("cliente_id", String(36), ForeignKey("clientes.id"), nullable=False, index=True)
    contract_number: Mapped[Optional[str]] = mapped_column("numero_contrato", String(50), nullable=True)
    principal: Mapped[Decimal] = mapped_column("valor_contrato", Numeric(12, 2), nullable=False)
    installments_count: Mapped[int] = mapped_column("qtd_parcelas", Integer, nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column("taxa_juros", Numeric(8, 4), nullable=False, default=Decimal("0"))
    first_due_date: Mapped[date] = mapped_column("primeiro_vencimento", Date, nullable=False)
    installment_amount: Mapped[Decimal] = mapped_column("valor_parcela", Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column("valor_total", Numeric(12, 2), nullable=False)
    status: Mapped[ContractStatus] = mapped_column(
        "status",
        Enum(ContractStatus, values_callable=get_enum_values),
        nullable=False,
        default=ContractStatus.ACTIVE
    )
    notes: Mapped[Optional[str]] = mapped_column("observacoes", Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column("criado_em", DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        "atualizado_em",
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column("excluido_em", DateTime, nullable=True)

    def __repr__(self):
        return f"<Contract(id={self.id}, number={self.contract_number}, status={self.status})>"

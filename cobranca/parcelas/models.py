"""
Data models for contract installments and the payments posted against them.
Installments are never physically deleted; `deleted_at` marks them inactive.
"""
import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cobranca.core.database import Base, get_enum_values
from cobranca.contratos.models import Contract  # noqa: F401  (registers the referenced table)


class InstallmentStatus(str, enum.Enum):
    """
    Installment lifecycle states.
    OVERDUE is never stored: it is derived from due_date and amount_paid at query time.
    """
    OPEN = "ABERTA"
    PARTIAL = "PARCIAL"
    PAID = "PAGA"
    OVERDUE = "VENCIDA"
    CANCELED = "CANCELADA"
    RENEGOTIATED = "RENEGOCIADA"


class InstallmentOrigin(str, enum.Enum):
    CONTRACT = "CONTRATO"
    RENEGOTIATION = "RENEGOCIACAO"
    MANUAL = "MANUAL"


class PaymentMethod(str, enum.Enum):
    CASH = "DINHEIRO"
    PIX = "PIX"
    BANK_TRANSFER = "TRANSFERENCIA"
    CARD = "CARTAO"
    BOLETO = "BOLETO"


# Stored states that still accept payments
PAYABLE_STATUSES = (InstallmentStatus.OPEN, InstallmentStatus.PARTIAL)


class Installment(Base):
    """One scheduled payment obligation within a contract."""

    __tablename__ = "parcelas_contrato"
    __table_args__ = (
        UniqueConstraint("contrato_id", "numero_parcela", name="uq_parcela_contrato_numero"),
        Index("ix_parcelas_empresa_vencimento", "empresa_id", "vencimento"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    contract_id: Mapped[str] = mapped_column("contrato_id", String(36), ForeignKey("contratos.id"), nullable=False, index=True)
    company_id: Mapped[str] = mapped_column("empresa_id", String(36), nullable=False, index=True)
    installment_number: Mapped[int] = mapped_column("numero_parcela", Integer, nullable=False)
    due_date: Mapped[date] = mapped_column("vencimento", Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column("valor", Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column("valor_pago", Numeric(12, 2), nullable=False, default=Decimal("0"))
    paid_at: Mapped[Optional[datetime]] = mapped_column("pago_em", DateTime, nullable=True)
    status: Mapped[InstallmentStatus] = mapped_column(
        "status",
        Enum(InstallmentStatus, values_callable=get_enum_values),
        nullable=False,
        default=InstallmentStatus.OPEN,
        index=True
    )
    origin: Mapped[InstallmentOrigin] = mapped_column(
        "origem",
        Enum(InstallmentOrigin, values_callable=get_enum_values),
        nullable=False,
        default=InstallmentOrigin.CONTRACT
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

    @property
    def outstanding(self) -> Decimal:
        return max(Decimal(self.amount) - Decimal(self.amount_paid), Decimal("0"))

    def __repr__(self):
        return (
            f"<Installment(id={self.id}, contract_id={self.contract_id}, "
            f"number={self.installment_number}, status={self.status})>"
        )


class InstallmentPayment(Base):
    """Append-only record of a payment posted against an installment."""

    __tablename__ = "pagamentos_parcela"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    company_id: Mapped[str] = mapped_column("empresa_id", String(36), nullable=False, index=True)
    installment_id: Mapped[str] = mapped_column(
        "parcela_id", String(36), ForeignKey("parcelas_contrato.id"), nullable=False, index=True
    )
    paid_amount: Mapped[Decimal] = mapped_column("valor_pago", Numeric(12, 2), nullable=False)
    paid_at: Mapped[datetime] = mapped_column("pago_em", DateTime, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        "forma_pagamento",
        Enum(PaymentMethod, values_callable=get_enum_values),
        nullable=False,
        default=PaymentMethod.PIX
    )
    reference: Mapped[Optional[str]] = mapped_column("referencia", String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column("observacoes", Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column("criado_em", DateTime, default=lambda: datetime.now(timezone.utc))
    correlation_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    def __repr__(self):
        return f"<InstallmentPayment(id={self.id}, installment_id={self.installment_id}, value={self.paid_amount})>"

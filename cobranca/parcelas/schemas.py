"""
Pydantic schemas for installment reads, edits and payment postings.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cobranca.core.utils import MAX_AMOUNT
from cobranca.parcelas.models import InstallmentOrigin, InstallmentStatus, PaymentMethod


class InstallmentRead(BaseModel):
    """Typed view of a stored installment."""
    id: str
    contract_id: str
    company_id: str
    installment_number: int
    due_date: date
    amount: Decimal
    amount_paid: Decimal
    paid_at: Optional[datetime] = None
    status: InstallmentStatus
    origin: InstallmentOrigin
    notes: Optional[str] = None
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class InstallmentView(InstallmentRead):
    """Installment with its status classified against today (OVERDUE is derived)."""
    effective_status: InstallmentStatus


class OverdueInstallment(InstallmentRead):
    """Overdue installment decorated with contract and customer data for collection screens."""
    contract_number: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    outstanding: Decimal


class InstallmentPatch(BaseModel):
    """Editable installment fields. Status is never editable here."""
    due_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)
    amount: Optional[Decimal] = Field(None, gt=0, le=MAX_AMOUNT, description="New scheduled amount (R$)")

    model_config = ConfigDict(extra="forbid")


class PaymentCreate(BaseModel):
    """Payment posting payload."""
    paid_amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT, description="Amount received (R$)")
    paid_at: Optional[datetime] = Field(None, description="Defaults to now")
    payment_method: PaymentMethod = Field(default=PaymentMethod.PIX)
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class PaymentRead(BaseModel):
    id: str
    company_id: str
    installment_id: str
    paid_amount: Decimal
    paid_at: datetime
    payment_method: PaymentMethod
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QuitRequest(BaseModel):
    payment_method: PaymentMethod = Field(default=PaymentMethod.PIX)


class QuitResult(BaseModel):
    """Outcome of settling every open installment of a contract."""
    payments_count: int
    closed: bool


class RenegotiationRequest(BaseModel):
    """Supersedes open installments with a new schedule for their outstanding balance."""
    installment_ids: List[str] = Field(..., min_length=1)
    term_count: int = Field(..., ge=1, le=600)
    monthly_rate_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    first_due_date: date

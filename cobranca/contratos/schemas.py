"""
Pydantic schemas for contract creation and reads.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cobranca.contratos.models import ContractStatus
from cobranca.parcelas.schemas import InstallmentRead
from cobranca.simulacao.schemas import LoanTerms


class ContractCreate(BaseModel):
    """Contract activation payload: loan terms plus the first due date of the schedule."""
    customer_id: str = Field(..., min_length=1)
    contract_number: Optional[str] = Field(None, max_length=50)
    principal: Decimal = Field(..., gt=0, le=100000000, description="Principal amount (R$)")
    installments_count: int = Field(..., ge=1, le=600, description="Number of monthly installments")
    monthly_rate_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100, description="Monthly rate (%)")
    first_due_date: date
    notes: Optional[str] = Field(None, max_length=2000)

    def to_terms(self) -> LoanTerms:
        return LoanTerms(
            principal=self.principal,
            term_count=self.installments_count,
            monthly_rate_percent=self.monthly_rate_percent,
        )


class ContractRead(BaseModel):
    id: str
    company_id: str
    customer_id: str
    contract_number: Optional[str] = None
    principal: Decimal
    installments_count: int
    interest_rate: Decimal
    first_due_date: date
    installment_amount: Decimal
    total_amount: Decimal
    status: ContractStatus
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ContractWithInstallments(ContractRead):
    installments: List[InstallmentRead]

"""
Pydantic schemas for loan terms and schedule simulation.
"""
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LoanTerms(BaseModel):
    """Validated, immutable loan terms used when a contract is created."""
    principal: Decimal = Field(..., gt=0, description="Principal amount (R$)")
    term_count: int = Field(..., ge=1, le=600, description="Number of monthly installments")
    monthly_rate_percent: Decimal = Field(
        default=Decimal("0"), ge=0, description="Monthly interest rate in percent (2.5 = 2.5%)"
    )

    model_config = ConfigDict(frozen=True)


class Schedule(BaseModel):
    """Result of the installment calculation. Values are unrounded."""
    installment_amount: Decimal = Field(..., description="Fixed amount of each installment")
    total_amount: Decimal = Field(..., description="Sum of all installments")

    model_config = ConfigDict(frozen=True)


class ScheduleRequest(BaseModel):
    """
    Live calculation payload.
    Fields are intentionally loose: a form recalculating on every keystroke
    may send blanks or partial numbers, which yield a zero schedule.
    """
    principal: Optional[Any] = None
    term_count: Optional[Any] = None
    monthly_rate_percent: Optional[Any] = None


class ScheduleResponse(BaseModel):
    installment_amount: Decimal = Field(..., description="Installment amount rounded to cents")
    total_amount: Decimal = Field(..., description="Total payable rounded to cents")


class AmortizationRow(BaseModel):
    """Represents a single row in the amortization schedule."""
    month: int = Field(..., ge=1, description="Installment number")
    due_date: Optional[date] = Field(None, description="Due date, when a first due date is given")
    installment: Decimal = Field(..., ge=0, description="Installment value")
    interest: Decimal = Field(..., ge=0, description="Interest amount")
    principal: Decimal = Field(..., ge=0, description="Principal amortization")
    balance: Decimal = Field(..., ge=0, description="Remaining balance")


class SimulationRequest(BaseModel):
    """Full simulation payload (Price table)."""
    principal: Decimal = Field(..., gt=0, le=100000000, description="Principal amount (R$)")
    term_count: int = Field(..., ge=1, le=600, description="Number of installments")
    monthly_rate_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100, description="Monthly rate (%)")
    first_due_date: Optional[date] = Field(None, description="Due date of the first installment")

    def to_terms(self) -> LoanTerms:
        return LoanTerms(
            principal=self.principal,
            term_count=self.term_count,
            monthly_rate_percent=self.monthly_rate_percent,
        )


class SimulationResponse(BaseModel):
    """Simulation result payload."""
    installment_amount: Decimal = Field(..., description="Monthly installment value")
    total_amount: Decimal = Field(..., description="Total payable amount")
    total_interest: Decimal = Field(..., description="Total interest over the term")
    annual_cet: Decimal = Field(..., description="Annualized Total Effective Cost (%)")
    table: List[AmortizationRow] = Field(..., description="Full amortization schedule")

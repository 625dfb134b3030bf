"""
FastAPI Router for installment simulation endpoints.
"""
from decimal import InvalidOperation
from typing import Annotated, Optional
from uuid import uuid4

from fastapi import APIRouter, Header

from cobranca.core.logger import get_logger_with_correlation, logger
from cobranca.core.utils import round_currency
from cobranca.simulacao.schemas import (
    AmortizationRow,
    ScheduleRequest,
    ScheduleResponse,
    SimulationRequest,
    SimulationResponse,
)
from cobranca.simulacao.service import ZERO, compute_schedule, simulate

router = APIRouter(tags=["Simulation"])


@router.post("/calcular", response_model=ScheduleResponse)
def calculate_schedule(data: ScheduleRequest) -> ScheduleResponse:
    """
    Live installment calculation.

    Accepts partial or malformed numbers and answers with a zero schedule
    instead of a validation error, so forms can recalculate on every keystroke.
    """
    schedule = compute_schedule(data.principal, data.term_count, data.monthly_rate_percent)
    try:
        installment_amount = round_currency(schedule.installment_amount)
        total_amount = round_currency(schedule.total_amount)
    except InvalidOperation:
        # Too many digits to express in cents
        logger.warning(f"Schedule out of range: principal={data.principal}, term={data.term_count}")
        installment_amount = total_amount = round_currency(ZERO)

    return ScheduleResponse(installment_amount=installment_amount, total_amount=total_amount)


@router.post("/tabela", response_model=SimulationResponse)
def simulate_installments(
    data: SimulationRequest,
    x_correlation_id: Annotated[Optional[str], Header()] = None
) -> SimulationResponse:
    """
    Price table simulation.

    - **principal**: Principal amount (R$)
    - **term_count**: Number of installments (1-600)
    - **monthly_rate_percent**: Monthly interest rate in percent (e.g. 2.5)
    - **first_due_date**: Optional, fills the due date of each row

    **Returns:** installment value, total payable, total interest, annualized CET and the schedule.
    """
    correlation_id = x_correlation_id or str(uuid4())
    logger = get_logger_with_correlation(correlation_id)
    logger.info(f"Starting simulation: {data.model_dump()}")

    result = simulate(data.to_terms(), data.first_due_date)

    return SimulationResponse(
        installment_amount=result["installment_amount"],
        total_amount=result["total_amount"],
        total_interest=result["total_interest"],
        annual_cet=result["annual_cet"],
        table=[AmortizationRow(**row) for row in result["table"]],
    )

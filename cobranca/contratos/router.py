"""
FastAPI Router for contract activation and contract-level installment operations.
The tenant is always explicit in the path.
"""
from typing import List
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from cobranca.contratos.schemas import ContractCreate, ContractRead, ContractWithInstallments
from cobranca.contratos.service import create_contract, get_contract
from cobranca.core.database import get_db
from cobranca.core.logger import get_logger_with_correlation
from cobranca.parcelas.schemas import (
    InstallmentRead,
    InstallmentView,
    QuitRequest,
    QuitResult,
    RenegotiationRequest,
)
from cobranca.parcelas.service import InstallmentLedger

router = APIRouter(tags=["Contracts"])


@router.post("/{company_id}/contratos", response_model=ContractWithInstallments, status_code=201)
def activate_contract(
    company_id: str,
    data: ContractCreate,
    db: Session = Depends(get_db),
    x_correlation_id: str = Header(default=None)
) -> ContractWithInstallments:
    """
    Creates an ACTIVE contract and generates its installment schedule.

    - **principal**: Principal amount (R$)
    - **installments_count**: Number of monthly installments
    - **monthly_rate_percent**: Monthly interest rate in percent (0 = no interest)
    - **first_due_date**: Due date of installment 1; the others follow monthly
    """
    correlation_id = x_correlation_id or str(uuid4())
    logger = get_logger_with_correlation(correlation_id)
    logger.info(f"Creating contract for company {company_id}: {data.model_dump()}")

    try:
        contract, installments = create_contract(db, company_id, data, correlation_id)
    except ValueError as e:
        logger.warning(f"Contract validation error: {str(e)}")
        raise HTTPException(status_code=400, detail=str(e))

    return ContractWithInstallments(
        **ContractRead.model_validate(contract).model_dump(),
        installments=[InstallmentRead.model_validate(inst) for inst in installments]
    )


@router.get("/{company_id}/contratos/{contract_id}", response_model=ContractRead)
def read_contract(
    company_id: str,
    contract_id: str,
    db: Session = Depends(get_db)
) -> ContractRead:
    return ContractRead.model_validate(get_contract(db, contract_id, company_id))


@router.get("/{company_id}/contratos/{contract_id}/parcelas", response_model=List[InstallmentView])
def list_contract_installments(
    company_id: str,
    contract_id: str,
    db: Session = Depends(get_db)
) -> List[InstallmentView]:
    """Active installments ordered by number, each with its status classified against today."""
    return InstallmentLedger(db).list_by_contract(contract_id, company_id)


@router.post("/{company_id}/contratos/{contract_id}/quitar", response_model=QuitResult)
def settle_contract(
    company_id: str,
    contract_id: str,
    data: QuitRequest,
    db: Session = Depends(get_db),
    x_correlation_id: str = Header(default=None)
) -> QuitResult:
    """Pays every open installment in full and closes the contract."""
    correlation_id = x_correlation_id or str(uuid4())
    return InstallmentLedger(db, correlation_id).quit_contract(contract_id, company_id, data.payment_method)


@router.post(
    "/{company_id}/contratos/{contract_id}/renegociar",
    response_model=List[InstallmentRead],
    status_code=201
)
def renegotiate_contract_installments(
    company_id: str,
    contract_id: str,
    data: RenegotiationRequest,
    db: Session = Depends(get_db),
    x_correlation_id: str = Header(default=None)
) -> List[InstallmentRead]:
    """
    Replaces open installments with a new schedule for their outstanding balance.
    The superseded installments become RENEGOTIATED.
    """
    correlation_id = x_correlation_id or str(uuid4())
    logger = get_logger_with_correlation(correlation_id)

    try:
        replacements = InstallmentLedger(db, correlation_id).renegotiate_installments(
            contract_id,
            company_id,
            data.installment_ids,
            data.term_count,
            data.monthly_rate_percent,
            data.first_due_date
        )
    except ValueError as e:
        logger.warning(f"Renegotiation rejected: {str(e)}")
        raise HTTPException(status_code=400, detail=str(e))

    return [InstallmentRead.model_validate(inst) for inst in replacements]

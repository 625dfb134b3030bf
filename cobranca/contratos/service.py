"""
Business logic for contract activation.
A contract is persisted together with its full installment schedule in one transaction.
"""
from typing import List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cobranca.contratos.models import Contract, ContractStatus, Customer
from cobranca.contratos.schemas import ContractCreate
from cobranca.core.exceptions import NotFoundError
from cobranca.core.logger import audit_log, logger
from cobranca.core.utils import MAX_AMOUNT, format_brl, round_currency
from cobranca.parcelas.models import Installment
from cobranca.parcelas.service import InstallmentLedger
from cobranca.simulacao.service import schedule_for


def get_contract(db: Session, contract_id: str, company_id: str) -> Contract:
    """Tenant-scoped contract read. Missing, foreign and soft-deleted contracts all raise NotFoundError."""
    contract = db.query(Contract).filter(
        Contract.id == contract_id,
        Contract.company_id == company_id,
        Contract.deleted_at.is_(None)
    ).first()

    if not contract:
        raise NotFoundError("Contract not found")
    return contract


def create_contract(
    db: Session,
    company_id: str,
    data: ContractCreate,
    correlation_id: str
) -> Tuple[Contract, List[Installment]]:
    """
    Creates an ACTIVE contract and its OPEN installments (numbers 1..N, monthly due dates).
    The customer must belong to the same company.
    """
    customer = db.query(Customer).filter(
        Customer.id == data.customer_id,
        Customer.company_id == company_id,
        Customer.deleted_at.is_(None)
    ).first()
    if not customer:
        raise NotFoundError("Customer not found")

    terms = data.to_terms()
    schedule = schedule_for(terms)
    installment_amount = round_currency(schedule.installment_amount)
    total_amount = round_currency(schedule.total_amount)
    if installment_amount <= 0:
        raise ValueError("Installment amount rounds to zero: principal too small for the number of installments")
    if total_amount > MAX_AMOUNT:
        raise ValueError(f"Total payable exceeds the maximum amount of {format_brl(MAX_AMOUNT)}")

    contract = Contract(
        company_id=company_id,
        customer_id=customer.id,
        contract_number=data.contract_number,
        principal=round_currency(terms.principal),
        installments_count=terms.term_count,
        interest_rate=terms.monthly_rate_percent,
        first_due_date=data.first_due_date,
        installment_amount=installment_amount,
        total_amount=total_amount,
        status=ContractStatus.ACTIVE,
        notes=data.notes
    )
    db.add(contract)
    db.flush()

    installments = InstallmentLedger(db, correlation_id).create_schedule(contract, schedule)

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Contract creation failed, rolled back: {str(e)}")
        raise

    db.refresh(contract)

    audit_log(
        action="contract_created",
        user="system",
        resource=f"contract_id={contract.id}",
        details={
            "correlation_id": correlation_id,
            "company_id": company_id,
            "principal": str(contract.principal),
            "installments": contract.installments_count
        }
    )

    logger.info(
        f"Contract created: id={contract.id}, installments={contract.installments_count}, "
        f"installment={format_brl(contract.installment_amount)}"
    )
    return contract, installments

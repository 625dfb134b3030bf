"""
FastAPI Router for installment endpoints: overdue listing, edits, cancellation and payments.
The tenant is always explicit in the path.
"""
from datetime import date
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from sqlalchemy.orm import Session

from cobranca.core.database import get_db
from cobranca.core.logger import get_logger_with_correlation
from cobranca.parcelas.schemas import (
    InstallmentPatch,
    InstallmentRead,
    InstallmentView,
    OverdueInstallment,
    PaymentCreate,
    PaymentRead,
)
from cobranca.parcelas.service import InstallmentLedger, effective_status

router = APIRouter(tags=["Installments"])


@router.get("/{company_id}/parcelas/vencidas", response_model=List[OverdueInstallment])
def list_overdue_installments(
    company_id: str,
    today: Optional[date] = Query(None, description="Reference date (defaults to today in Brasília)"),
    db: Session = Depends(get_db)
) -> List[OverdueInstallment]:
    """
    Delinquency report.

    Installments due before today that are not fully paid, oldest first,
    with the contract number and customer name.
    """
    return InstallmentLedger(db).list_overdue(company_id, today)


@router.get("/{company_id}/parcelas/{installment_id}", response_model=InstallmentView)
def read_installment(
    company_id: str,
    installment_id: str,
    db: Session = Depends(get_db)
) -> InstallmentView:
    installment = InstallmentLedger(db).get_installment(installment_id, company_id)
    return InstallmentView(
        **InstallmentRead.model_validate(installment).model_dump(),
        effective_status=effective_status(installment)
    )


@router.patch("/{company_id}/parcelas/{installment_id}", status_code=204)
def edit_installment(
    company_id: str,
    installment_id: str,
    patch: InstallmentPatch,
    db: Session = Depends(get_db),
    x_correlation_id: str = Header(default=None)
) -> Response:
    """Edits due date, notes or amount. The status is never changed here."""
    correlation_id = x_correlation_id or str(uuid4())
    InstallmentLedger(db, correlation_id).update_installment(installment_id, company_id, patch)
    return Response(status_code=204)


@router.post("/{company_id}/parcelas/{installment_id}/cancelar", status_code=204)
def cancel_installment(
    company_id: str,
    installment_id: str,
    db: Session = Depends(get_db),
    x_correlation_id: str = Header(default=None)
) -> Response:
    """Cancels an installment. Repeating the call is a no-op."""
    correlation_id = x_correlation_id or str(uuid4())
    InstallmentLedger(db, correlation_id).cancel_installment(installment_id, company_id)
    return Response(status_code=204)


@router.delete("/{company_id}/parcelas/{installment_id}", status_code=204)
def delete_installment(
    company_id: str,
    installment_id: str,
    db: Session = Depends(get_db),
    x_correlation_id: str = Header(default=None)
) -> Response:
    """Soft delete: the record is kept but leaves every active listing."""
    correlation_id = x_correlation_id or str(uuid4())
    InstallmentLedger(db, correlation_id).soft_delete_installment(installment_id, company_id)
    return Response(status_code=204)


@router.post(
    "/{company_id}/parcelas/{installment_id}/pagamentos",
    response_model=PaymentRead,
    status_code=201
)
def post_payment(
    company_id: str,
    installment_id: str,
    data: PaymentCreate,
    db: Session = Depends(get_db),
    x_correlation_id: str = Header(default=None)
) -> PaymentRead:
    """
    Posts a payment against an installment.

    - Partial payments move the installment to PARTIAL
    - Settling the balance moves it to PAID
    - Payments above the outstanding balance are rejected
    """
    correlation_id = x_correlation_id or str(uuid4())
    logger = get_logger_with_correlation(correlation_id)
    logger.info(f"Posting payment on installment {installment_id}: value={data.paid_amount}")

    try:
        payment = InstallmentLedger(db, correlation_id).record_payment(installment_id, company_id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return PaymentRead.model_validate(payment)


@router.get("/{company_id}/parcelas/{installment_id}/pagamentos", response_model=List[PaymentRead])
def list_installment_payments(
    company_id: str,
    installment_id: str,
    db: Session = Depends(get_db)
) -> List[PaymentRead]:
    payments = InstallmentLedger(db).list_payments(installment_id, company_id)
    return [PaymentRead.model_validate(p) for p in payments]

"""
Installment ledger.
Owns the per-installment state machine and the tenant-scoped queries over contract installments.

Every query and write carries the `company_id` and `deleted_at IS NULL` predicates.
Writes are single conditional UPDATEs: when no row matches, the row is read back
(still tenant-scoped) only to tell the caller why.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, func, literal, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cobranca.contratos.models import Contract, ContractStatus, Customer
from cobranca.core.exceptions import InvalidInstallmentStateError, NotFoundError, PaymentExceedsBalanceError
from cobranca.core.logger import audit_log, logger
from cobranca.core.utils import MAX_AMOUNT, add_months, local_today, round_currency
from cobranca.parcelas.models import (
    PAYABLE_STATUSES,
    Installment,
    InstallmentOrigin,
    InstallmentPayment,
    InstallmentStatus,
    PaymentMethod,
)
from cobranca.parcelas.schemas import (
    InstallmentPatch,
    InstallmentRead,
    InstallmentView,
    OverdueInstallment,
    PaymentCreate,
    QuitResult,
)
from cobranca.simulacao.schemas import Schedule
from cobranca.simulacao.service import compute_schedule

# Amounts are stored in cents; comparisons tolerate float storage on SQLite
HALF_CENT = Decimal("0.005")

NOT_FOUND_MESSAGE = "Installment not found"


def effective_status(installment: Installment, today: Optional[date] = None) -> InstallmentStatus:
    """
    Classifies an installment against today.
    OPEN/PARTIAL installments past their due date with an unpaid balance are OVERDUE.
    """
    today = today or local_today()
    if (
        installment.status in PAYABLE_STATUSES
        and installment.due_date < today
        and Decimal(installment.amount_paid) < Decimal(installment.amount)
    ):
        return InstallmentStatus.OVERDUE
    return installment.status


def _status_literal(status: InstallmentStatus) -> Any:
    return literal(status, Installment.__table__.c.status.type)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstallmentLedger:
    """
    Tenant-scoped operations over contract installments.
    A ledger wraps one database session; commit boundaries are per public operation.
    """

    def __init__(self, db: Session, correlation_id: Optional[str] = None, user: str = "system"):
        self.db = db
        self.correlation_id = correlation_id
        self.user = user

    # ------------------------------------------------------------------ scoping

    @staticmethod
    def _active(company_id: str) -> Tuple[Any, Any]:
        """Tenant and soft-delete predicates shared by every query and write."""
        if not company_id:
            raise ValueError("company_id is required")
        return Installment.company_id == company_id, Installment.deleted_at.is_(None)

    def _find(self, installment_id: str, company_id: str) -> Optional[Installment]:
        return (
            self.db.query(Installment)
            .filter(Installment.id == installment_id, *self._active(company_id))
            .populate_existing()
            .first()
        )

    def _find_contract(self, contract_id: str, company_id: str) -> Contract:
        contract = self.db.query(Contract).filter(
            Contract.id == contract_id,
            Contract.company_id == company_id,
            Contract.deleted_at.is_(None)
        ).first()
        if not contract:
            raise NotFoundError("Contract not found")
        return contract

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{action} failed, rolled back: {str(e)}")
            raise

    def _audit(self, action: str, resource: str, details: Dict[str, Any]) -> None:
        audit_log(
            action=action,
            user=self.user,
            resource=resource,
            details={"correlation_id": self.correlation_id, **details}
        )

    # ------------------------------------------------------------------ queries

    def get_installment(self, installment_id: str, company_id: str) -> Installment:
        installment = self._find(installment_id, company_id)
        if not installment:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        return installment

    def list_by_contract(
        self, contract_id: str, company_id: str, today: Optional[date] = None
    ) -> List[InstallmentView]:
        """Active installments of a contract ordered by number, with the derived status."""
        self._find_contract(contract_id, company_id)
        today = today or local_today()

        installments = (
            self.db.query(Installment)
            .filter(Installment.contract_id == contract_id, *self._active(company_id))
            .order_by(Installment.installment_number.asc())
            .all()
        )

        return [
            InstallmentView(
                **InstallmentRead.model_validate(inst).model_dump(),
                effective_status=effective_status(inst, today)
            )
            for inst in installments
        ]

    def list_overdue(self, company_id: str, today: Optional[date] = None) -> List[OverdueInstallment]:
        """
        Installments past due with an unpaid balance, oldest due date first.
        Each row carries the contract number and the customer's name for collection screens.
        """
        today = today or local_today()

        rows = (
            self.db.query(Installment, Contract.contract_number, Contract.customer_id, Customer.full_name)
            .outerjoin(
                Contract,
                and_(Contract.id == Installment.contract_id, Contract.company_id == Installment.company_id)
            )
            .outerjoin(
                Customer,
                and_(Customer.id == Contract.customer_id, Customer.company_id == Installment.company_id)
            )
            .filter(
                *self._active(company_id),
                Installment.due_date < today,
                Installment.amount - Installment.amount_paid > HALF_CENT
            )
            .order_by(
                Installment.due_date.asc(),
                Installment.installment_number.asc(),
                Installment.id.asc()
            )
            .all()
        )

        overdue: List[OverdueInstallment] = []
        for installment, contract_number, customer_id, customer_name in rows:
            overdue.append(OverdueInstallment(
                **InstallmentRead.model_validate(installment).model_dump(),
                contract_number=contract_number,
                customer_id=customer_id,
                customer_name=customer_name,
                outstanding=installment.outstanding
            ))

        logger.info(f"Overdue listing: company_id={company_id}, today={today}, count={len(overdue)}")
        return overdue

    def list_payments(self, installment_id: str, company_id: str) -> List[InstallmentPayment]:
        """Payments posted against an installment, newest first."""
        self.get_installment(installment_id, company_id)
        return (
            self.db.query(InstallmentPayment)
            .filter(
                InstallmentPayment.installment_id == installment_id,
                InstallmentPayment.company_id == company_id
            )
            .order_by(InstallmentPayment.paid_at.desc(), InstallmentPayment.created_at.desc())
            .all()
        )

    # ------------------------------------------------------------------ writes

    def create_schedule(self, contract: Contract, schedule: Schedule) -> List[Installment]:
        """
        Adds one OPEN installment per period of the contract (numbers 1..N, monthly due dates).
        Does not commit: runs inside the contract creation transaction.
        """
        amount = round_currency(schedule.installment_amount)
        installments = [
            Installment(
                contract_id=contract.id,
                company_id=contract.company_id,
                installment_number=number,
                due_date=add_months(contract.first_due_date, number - 1),
                amount=amount,
                amount_paid=Decimal("0"),
                status=InstallmentStatus.OPEN,
                origin=InstallmentOrigin.CONTRACT
            )
            for number in range(1, contract.installments_count + 1)
        ]
        self.db.add_all(installments)
        return installments

    def update_installment(self, installment_id: str, company_id: str, patch: InstallmentPatch) -> None:
        """
        Edits due date, notes and/or amount. Never changes the status.
        Amount edits are only accepted on OPEN/PARTIAL installments and must stay above the amount paid.
        """
        values: Dict[Any, Any] = {Installment.updated_at: _utcnow()}
        changes = patch.model_dump(exclude_unset=True)

        if changes.get("due_date") is not None:
            values[Installment.due_date] = changes["due_date"]
        if "notes" in changes:
            values[Installment.notes] = changes["notes"]

        stmt = update(Installment).where(Installment.id == installment_id, *self._active(company_id))

        new_amount = changes.get("amount")
        if new_amount is not None:
            new_amount = round_currency(new_amount)
            values[Installment.amount] = new_amount
            stmt = stmt.where(
                Installment.status.in_(PAYABLE_STATUSES),
                Installment.amount_paid < new_amount
            )

        result = self.db.execute(stmt.values(values).execution_options(synchronize_session=False))

        if result.rowcount == 0:
            self.db.rollback()
            installment = self._find(installment_id, company_id)
            if not installment:
                raise NotFoundError(NOT_FOUND_MESSAGE)
            if installment.status not in PAYABLE_STATUSES:
                raise InvalidInstallmentStateError(
                    f"Amount cannot be changed on a {installment.status.name} installment"
                )
            raise InvalidInstallmentStateError("Amount must be greater than the amount already paid")

        self._commit("Installment update")
        self._audit("installment_updated", f"installment_id={installment_id}", {
            "company_id": company_id,
            "fields": sorted(k for k, v in changes.items() if v is not None or k == "notes")
        })
        logger.info(f"Installment updated: id={installment_id}")

    def cancel_installment(self, installment_id: str, company_id: str) -> None:
        """
        Sets the installment to CANCELED. Idempotent: canceling a canceled installment is a no-op.
        PAID and RENEGOTIATED installments cannot be canceled.
        """
        stmt = (
            update(Installment)
            .where(
                Installment.id == installment_id,
                *self._active(company_id),
                Installment.status.not_in((InstallmentStatus.PAID, InstallmentStatus.RENEGOTIATED))
            )
            .values({Installment.status: InstallmentStatus.CANCELED, Installment.updated_at: _utcnow()})
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount == 0:
            self.db.rollback()
            installment = self._find(installment_id, company_id)
            if not installment:
                raise NotFoundError(NOT_FOUND_MESSAGE)
            raise InvalidInstallmentStateError(f"A {installment.status.name} installment cannot be canceled")

        self._commit("Installment cancellation")
        self._audit("installment_canceled", f"installment_id={installment_id}", {"company_id": company_id})
        logger.info(f"Installment canceled: id={installment_id}")

    def soft_delete_installment(self, installment_id: str, company_id: str) -> None:
        """Marks the installment as deleted. It disappears from every active query."""
        stmt = (
            update(Installment)
            .where(Installment.id == installment_id, *self._active(company_id))
            .values({Installment.deleted_at: _utcnow(), Installment.updated_at: _utcnow()})
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount == 0:
            self.db.rollback()
            raise NotFoundError(NOT_FOUND_MESSAGE)

        self._commit("Installment deletion")
        self._audit("installment_deleted", f"installment_id={installment_id}", {"company_id": company_id})
        logger.info(f"Installment soft-deleted: id={installment_id}")

    def _apply_payment(
        self,
        installment_id: str,
        company_id: str,
        paid_amount: Decimal,
        paid_at: datetime,
        payment_method: PaymentMethod,
        reference: Optional[str] = None,
        notes: Optional[str] = None
    ) -> InstallmentPayment:
        """
        Posts a payment without committing.
        amount_paid, status and paid_at move together in one conditional UPDATE:
        PARTIAL while a balance remains, PAID (paid_at set once) when settled.
        """
        amount = round_currency(paid_amount)
        if amount <= 0:
            raise ValueError("Payment amount must be positive")

        new_paid = Installment.amount_paid + amount
        settled = new_paid >= Installment.amount - HALF_CENT

        stmt = (
            update(Installment)
            .where(
                Installment.id == installment_id,
                *self._active(company_id),
                Installment.status.in_(PAYABLE_STATUSES),
                new_paid <= Installment.amount + HALF_CENT
            )
            .values({
                Installment.amount_paid: new_paid,
                Installment.status: case(
                    (settled, _status_literal(InstallmentStatus.PAID)),
                    else_=_status_literal(InstallmentStatus.PARTIAL)
                ),
                Installment.paid_at: case(
                    (settled, func.coalesce(Installment.paid_at, paid_at)),
                    else_=Installment.paid_at
                ),
                Installment.updated_at: _utcnow()
            })
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount == 0:
            self.db.rollback()
            installment = self._find(installment_id, company_id)
            if not installment:
                raise NotFoundError(NOT_FOUND_MESSAGE)
            if installment.status not in PAYABLE_STATUSES:
                raise InvalidInstallmentStateError(
                    f"A {installment.status.name} installment does not accept payments"
                )
            raise PaymentExceedsBalanceError(
                f"Payment of {amount} exceeds the outstanding balance of {round_currency(installment.outstanding)}"
            )

        payment = InstallmentPayment(
            company_id=company_id,
            installment_id=installment_id,
            paid_amount=amount,
            paid_at=paid_at,
            payment_method=payment_method,
            reference=reference,
            notes=notes,
            correlation_id=self.correlation_id
        )
        self.db.add(payment)
        return payment

    def _close_contract_if_settled(self, contract_id: str, company_id: str) -> bool:
        """Closes an ACTIVE contract once none of its active installments accepts payments."""
        remaining = (
            self.db.query(Installment.id)
            .filter(
                Installment.contract_id == contract_id,
                *self._active(company_id),
                Installment.status.in_(PAYABLE_STATUSES)
            )
            .first()
        )
        if remaining is not None:
            return False

        result = self.db.execute(
            update(Contract)
            .where(
                Contract.id == contract_id,
                Contract.company_id == company_id,
                Contract.status == ContractStatus.ACTIVE
            )
            .values({Contract.status: ContractStatus.CLOSED, Contract.updated_at: _utcnow()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def record_payment(self, installment_id: str, company_id: str, payment: PaymentCreate) -> InstallmentPayment:
        """
        Posts a payment against an installment and closes the contract when it was the last open one.
        Payments above the outstanding balance are rejected.
        """
        paid_at = payment.paid_at or _utcnow()
        posted = self._apply_payment(
            installment_id,
            company_id,
            payment.paid_amount,
            paid_at,
            payment.payment_method,
            payment.reference,
            payment.notes
        )

        installment = self._find(installment_id, company_id)
        closed = False
        if installment is not None:
            closed = self._close_contract_if_settled(installment.contract_id, company_id)

        self._commit("Payment posting")
        self.db.refresh(posted)

        self._audit("installment_payment", f"installment_id={installment_id}", {
            "company_id": company_id,
            "payment_id": posted.id,
            "value": str(posted.paid_amount),
            "method": posted.payment_method.value,
            "contract_closed": closed
        })
        logger.info(f"Payment posted: installment_id={installment_id}, value={posted.paid_amount}")
        return posted

    def quit_contract(
        self, contract_id: str, company_id: str, payment_method: PaymentMethod = PaymentMethod.PIX
    ) -> QuitResult:
        """Pays the outstanding balance of every OPEN/PARTIAL installment and closes the contract."""
        self._find_contract(contract_id, company_id)
        paid_at = _utcnow()

        installments = (
            self.db.query(Installment)
            .filter(
                Installment.contract_id == contract_id,
                *self._active(company_id),
                Installment.status.in_(PAYABLE_STATUSES)
            )
            .order_by(Installment.installment_number.asc())
            .all()
        )

        payments_count = 0
        for installment in installments:
            outstanding = round_currency(installment.outstanding)
            if outstanding <= 0:
                continue
            self._apply_payment(
                installment.id,
                company_id,
                outstanding,
                paid_at,
                payment_method,
                notes="Contract settlement"
            )
            payments_count += 1

        closed = self._close_contract_if_settled(contract_id, company_id)
        self._commit("Contract settlement")

        self._audit("contract_settled", f"contract_id={contract_id}", {
            "company_id": company_id,
            "payments_count": payments_count,
            "closed": closed
        })
        logger.info(f"Contract settled: id={contract_id}, payments={payments_count}, closed={closed}")
        return QuitResult(payments_count=payments_count, closed=closed)

    def renegotiate_installments(
        self,
        contract_id: str,
        company_id: str,
        installment_ids: Sequence[str],
        term_count: int,
        monthly_rate_percent: Decimal,
        first_due_date: date
    ) -> List[Installment]:
        """
        Supersedes OPEN/PARTIAL installments: marks them RENEGOTIATED and appends a new
        schedule (origin RENEGOTIATION) for their combined outstanding balance.
        New installments are numbered after the contract's highest number.
        """
        self._find_contract(contract_id, company_id)
        ids = list(dict.fromkeys(installment_ids))

        superseded = (
            self.db.query(Installment)
            .filter(
                Installment.id.in_(ids),
                Installment.contract_id == contract_id,
                *self._active(company_id)
            )
            .all()
        )
        if len(superseded) != len(ids):
            raise NotFoundError(NOT_FOUND_MESSAGE)

        not_payable = [inst for inst in superseded if inst.status not in PAYABLE_STATUSES]
        if not_payable:
            raise InvalidInstallmentStateError(
                f"A {not_payable[0].status.name} installment cannot be renegotiated"
            )

        balance = sum((inst.outstanding for inst in superseded), Decimal("0"))
        schedule = compute_schedule(balance, term_count, monthly_rate_percent)
        amount = round_currency(schedule.installment_amount)
        if amount <= 0:
            raise ValueError("Outstanding balance too small for the number of installments")
        if round_currency(schedule.total_amount) > MAX_AMOUNT:
            raise ValueError("Renegotiated total exceeds the maximum amount")

        result = self.db.execute(
            update(Installment)
            .where(
                Installment.id.in_(ids),
                Installment.contract_id == contract_id,
                *self._active(company_id),
                Installment.status.in_(PAYABLE_STATUSES)
            )
            .values({Installment.status: InstallmentStatus.RENEGOTIATED, Installment.updated_at: _utcnow()})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(ids):
            self.db.rollback()
            raise InvalidInstallmentStateError("Installments changed during renegotiation")

        # Numbering spans soft-deleted rows too: (contract, number) is unique
        last_number = self.db.query(func.max(Installment.installment_number)).filter(
            Installment.contract_id == contract_id,
            Installment.company_id == company_id
        ).scalar() or 0

        replacements = [
            Installment(
                contract_id=contract_id,
                company_id=company_id,
                installment_number=last_number + offset,
                due_date=add_months(first_due_date, offset - 1),
                amount=amount,
                amount_paid=Decimal("0"),
                status=InstallmentStatus.OPEN,
                origin=InstallmentOrigin.RENEGOTIATION
            )
            for offset in range(1, term_count + 1)
        ]
        self.db.add_all(replacements)
        self._commit("Renegotiation")

        self._audit("installments_renegotiated", f"contract_id={contract_id}", {
            "company_id": company_id,
            "superseded": ids,
            "balance": str(round_currency(balance)),
            "new_installments": term_count
        })
        logger.info(f"Renegotiation: contract_id={contract_id}, superseded={len(ids)}, new={term_count}")
        return replacements

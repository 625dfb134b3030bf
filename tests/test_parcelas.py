"""
Tests for the installment ledger.
Covers tenant isolation, the payment state machine, idempotent cancellation,
the overdue report and renegotiation against an in-memory database.
"""
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cobranca.contratos.models import ContractStatus, Customer
from cobranca.contratos.schemas import ContractCreate
from cobranca.contratos.service import create_contract, get_contract
from cobranca.core.database import Base
from cobranca.core.exceptions import InvalidInstallmentStateError, NotFoundError, PaymentExceedsBalanceError
from cobranca.parcelas.models import Installment, InstallmentOrigin, InstallmentStatus, PaymentMethod
from cobranca.parcelas.schemas import InstallmentPatch, PaymentCreate
from cobranca.parcelas.service import InstallmentLedger, effective_status

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

COMPANY_A = "empresa-a"
COMPANY_B = "empresa-b"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def ledger(db):
    return InstallmentLedger(db, correlation_id="test-ledger")


def add_customer(db, company_id: str, name: str = "Maria Souza") -> str:
    customer = Customer(company_id=company_id, full_name=name)
    db.add(customer)
    db.commit()
    return customer.id


def add_contract(
    db,
    company_id: str = COMPANY_A,
    installments: int = 3,
    principal: str = "300",
    rate: str = "0",
    first_due_date: date = date(2024, 1, 10),
    number: str = "CT-001",
    customer_name: str = "Maria Souza",
):
    customer_id = add_customer(db, company_id, customer_name)
    data = ContractCreate(
        customer_id=customer_id,
        contract_number=number,
        principal=Decimal(principal),
        installments_count=installments,
        monthly_rate_percent=Decimal(rate),
        first_due_date=first_due_date,
    )
    contract, rows = create_contract(db, company_id, data, "test-contract")
    return contract.id, [row.id for row in rows]


def pay(ledger, installment_id: str, value: str, company_id: str = COMPANY_A):
    return ledger.record_payment(installment_id, company_id, PaymentCreate(paid_amount=Decimal(value)))


# ---------------------------------------------------------------- schedule


def test_contract_creates_numbered_monthly_schedule(db, ledger):
    contract_id, _ = add_contract(db, installments=3, first_due_date=date(2024, 1, 31))

    rows = ledger.list_by_contract(contract_id, COMPANY_A, today=date(2024, 1, 1))

    assert [row.installment_number for row in rows] == [1, 2, 3]
    assert [row.due_date for row in rows] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]
    assert all(row.amount == Decimal("100") for row in rows)
    assert all(row.status == InstallmentStatus.OPEN for row in rows)
    assert all(row.origin == InstallmentOrigin.CONTRACT for row in rows)


def test_contract_with_interest_stores_rounded_installment(db):
    contract_id, _ = add_contract(db, installments=12, principal="10000", rate="2")

    contract = get_contract(db, contract_id, COMPANY_A)

    assert contract.status == ContractStatus.ACTIVE
    assert contract.installment_amount == Decimal("945.60")
    assert contract.total_amount == Decimal("11347.15")


def test_contract_for_foreign_customer_is_rejected(db):
    customer_id = add_customer(db, COMPANY_B)
    data = ContractCreate(
        customer_id=customer_id,
        principal=Decimal("500"),
        installments_count=5,
        first_due_date=date(2024, 1, 10),
    )

    with pytest.raises(NotFoundError):
        create_contract(db, COMPANY_A, data, "test-contract")


def test_contract_is_invisible_to_other_company(db):
    contract_id, _ = add_contract(db)

    with pytest.raises(NotFoundError):
        get_contract(db, contract_id, COMPANY_B)


# ---------------------------------------------------------------- overdue report


def test_list_overdue_returns_past_due_unpaid_oldest_first(db, ledger):
    _, ids = add_contract(db, installments=3, first_due_date=date(2024, 1, 10), customer_name="Ana Lima")

    overdue = ledger.list_overdue(COMPANY_A, today=date(2024, 2, 15))

    assert [row.id for row in overdue] == ids[:2]
    assert overdue[0].contract_number == "CT-001"
    assert overdue[0].customer_name == "Ana Lima"
    assert overdue[0].outstanding == Decimal("100")


def test_list_overdue_excludes_installment_due_today(db, ledger):
    add_contract(db, installments=2, first_due_date=date(2024, 1, 10))

    overdue = ledger.list_overdue(COMPANY_A, today=date(2024, 1, 10))

    assert overdue == []


def test_list_overdue_is_tenant_scoped(db, ledger):
    add_contract(db, company_id=COMPANY_A, installments=2, number="A-1")
    add_contract(db, company_id=COMPANY_B, installments=2, number="B-1")

    overdue = ledger.list_overdue(COMPANY_A, today=date(2025, 1, 1))

    assert len(overdue) == 2
    assert all(row.company_id == COMPANY_A for row in overdue)
    assert {row.contract_number for row in overdue} == {"A-1"}


def test_list_overdue_excludes_paid_and_keeps_partial(db, ledger):
    _, ids = add_contract(db, installments=3, first_due_date=date(2024, 1, 10))
    pay(ledger, ids[0], "100")
    pay(ledger, ids[1], "40")

    overdue = ledger.list_overdue(COMPANY_A, today=date(2024, 6, 1))

    assert [row.id for row in overdue] == ids[1:]
    assert overdue[0].status == InstallmentStatus.PARTIAL
    assert overdue[0].outstanding == Decimal("60")


def test_list_overdue_excludes_soft_deleted(db, ledger):
    _, ids = add_contract(db, installments=2, first_due_date=date(2024, 1, 10))
    ledger.soft_delete_installment(ids[0], COMPANY_A)

    overdue = ledger.list_overdue(COMPANY_A, today=date(2024, 6, 1))

    assert [row.id for row in overdue] == [ids[1]]


def test_list_overdue_orders_across_contracts(db, ledger):
    add_contract(db, installments=2, first_due_date=date(2024, 1, 20), number="CT-LATE")
    add_contract(db, installments=2, first_due_date=date(2024, 1, 5), number="CT-EARLY")

    overdue = ledger.list_overdue(COMPANY_A, today=date(2024, 6, 1))

    due_dates = [row.due_date for row in overdue]
    assert due_dates == sorted(due_dates)
    assert [row.contract_number for row in overdue] == ["CT-EARLY", "CT-LATE", "CT-EARLY", "CT-LATE"]


def test_list_overdue_requires_company(ledger):
    with pytest.raises(ValueError):
        ledger.list_overdue("", today=date(2024, 6, 1))


def test_list_overdue_empty_company(ledger):
    assert ledger.list_overdue(COMPANY_A, today=date(2024, 6, 1)) == []


# ---------------------------------------------------------------- payments


def test_partial_payment_moves_to_partial(db, ledger):
    _, ids = add_contract(db)

    payment = pay(ledger, ids[0], "30.50")
    installment = ledger.get_installment(ids[0], COMPANY_A)

    assert payment.paid_amount == Decimal("30.50")
    assert installment.status == InstallmentStatus.PARTIAL
    assert installment.amount_paid == Decimal("30.50")
    assert installment.paid_at is None


def test_settling_payment_marks_paid(db, ledger):
    _, ids = add_contract(db)

    pay(ledger, ids[0], "40")
    pay(ledger, ids[0], "60")
    installment = ledger.get_installment(ids[0], COMPANY_A)

    assert installment.status == InstallmentStatus.PAID
    assert installment.amount_paid == installment.amount
    assert installment.paid_at is not None


def test_overpayment_is_rejected_without_changes(db, ledger):
    _, ids = add_contract(db)
    pay(ledger, ids[0], "50")

    with pytest.raises(PaymentExceedsBalanceError):
        pay(ledger, ids[0], "50.01")

    installment = ledger.get_installment(ids[0], COMPANY_A)
    assert installment.amount_paid == Decimal("50")
    assert installment.status == InstallmentStatus.PARTIAL
    assert len(ledger.list_payments(ids[0], COMPANY_A)) == 1


def test_payment_on_paid_installment_is_rejected(db, ledger):
    _, ids = add_contract(db)
    pay(ledger, ids[0], "100")

    with pytest.raises(InvalidInstallmentStateError):
        pay(ledger, ids[0], "1")


def test_payment_on_canceled_installment_is_rejected(db, ledger):
    _, ids = add_contract(db)
    ledger.cancel_installment(ids[0], COMPANY_A)

    with pytest.raises(InvalidInstallmentStateError):
        pay(ledger, ids[0], "10")


def test_paying_last_installment_closes_contract(db, ledger):
    contract_id, ids = add_contract(db, installments=2, principal="200")

    pay(ledger, ids[0], "100")
    assert get_contract(db, contract_id, COMPANY_A).status == ContractStatus.ACTIVE

    pay(ledger, ids[1], "100")
    assert get_contract(db, contract_id, COMPANY_A).status == ContractStatus.CLOSED


def test_list_payments_newest_first(db, ledger):
    _, ids = add_contract(db)
    ledger.record_payment(ids[0], COMPANY_A, PaymentCreate(
        paid_amount=Decimal("10"), paid_at="2024-01-05T10:00:00", payment_method=PaymentMethod.CASH
    ))
    ledger.record_payment(ids[0], COMPANY_A, PaymentCreate(
        paid_amount=Decimal("20"), paid_at="2024-01-08T10:00:00", reference="E2E-123"
    ))

    payments = ledger.list_payments(ids[0], COMPANY_A)

    assert [p.paid_amount for p in payments] == [Decimal("20"), Decimal("10")]
    assert payments[0].reference == "E2E-123"
    assert payments[1].payment_method == PaymentMethod.CASH
    assert payments[0].correlation_id == "test-ledger"


# ---------------------------------------------------------------- tenant isolation


@pytest.mark.parametrize("operation", [
    lambda ledger, iid: ledger.get_installment(iid, COMPANY_B),
    lambda ledger, iid: ledger.cancel_installment(iid, COMPANY_B),
    lambda ledger, iid: ledger.soft_delete_installment(iid, COMPANY_B),
    lambda ledger, iid: ledger.update_installment(iid, COMPANY_B, InstallmentPatch(notes="x", amount=Decimal("1"))),
    lambda ledger, iid: pay(ledger, iid, "10", company_id=COMPANY_B),
    lambda ledger, iid: ledger.list_payments(iid, COMPANY_B),
])
def test_foreign_company_sees_not_found_and_changes_nothing(db, ledger, operation):
    _, ids = add_contract(db)

    with pytest.raises(NotFoundError):
        operation(ledger, ids[0])

    installment = ledger.get_installment(ids[0], COMPANY_A)
    assert installment.status == InstallmentStatus.OPEN
    assert installment.amount == Decimal("100")
    assert installment.amount_paid == Decimal("0")
    assert installment.notes is None
    assert installment.deleted_at is None


def test_unknown_installment_is_not_found(ledger):
    with pytest.raises(NotFoundError):
        ledger.cancel_installment("does-not-exist", COMPANY_A)


# ---------------------------------------------------------------- cancellation


def test_cancel_is_idempotent(db, ledger):
    _, ids = add_contract(db)

    ledger.cancel_installment(ids[0], COMPANY_A)
    ledger.cancel_installment(ids[0], COMPANY_A)

    assert ledger.get_installment(ids[0], COMPANY_A).status == InstallmentStatus.CANCELED


def test_cancel_partial_keeps_amount_paid(db, ledger):
    _, ids = add_contract(db)
    pay(ledger, ids[0], "25")

    ledger.cancel_installment(ids[0], COMPANY_A)
    installment = ledger.get_installment(ids[0], COMPANY_A)

    assert installment.status == InstallmentStatus.CANCELED
    assert installment.amount_paid == Decimal("25")


def test_paid_installment_cannot_be_canceled(db, ledger):
    _, ids = add_contract(db)
    pay(ledger, ids[0], "100")

    with pytest.raises(InvalidInstallmentStateError):
        ledger.cancel_installment(ids[0], COMPANY_A)

    assert ledger.get_installment(ids[0], COMPANY_A).status == InstallmentStatus.PAID


# ---------------------------------------------------------------- edits


def test_update_due_date_and_notes_keeps_status(db, ledger):
    _, ids = add_contract(db)
    pay(ledger, ids[0], "10")

    ledger.update_installment(ids[0], COMPANY_A, InstallmentPatch(due_date=date(2024, 3, 1), notes="Combinado por telefone"))
    installment = ledger.get_installment(ids[0], COMPANY_A)

    assert installment.due_date == date(2024, 3, 1)
    assert installment.notes == "Combinado por telefone"
    assert installment.status == InstallmentStatus.PARTIAL


def test_update_amount_on_open_installment(db, ledger):
    _, ids = add_contract(db)

    ledger.update_installment(ids[0], COMPANY_A, InstallmentPatch(amount=Decimal("120.456")))

    assert ledger.get_installment(ids[0], COMPANY_A).amount == Decimal("120.46")


def test_update_amount_below_paid_is_rejected(db, ledger):
    _, ids = add_contract(db)
    pay(ledger, ids[0], "60")

    with pytest.raises(InvalidInstallmentStateError):
        ledger.update_installment(ids[0], COMPANY_A, InstallmentPatch(amount=Decimal("50")))

    assert ledger.get_installment(ids[0], COMPANY_A).amount == Decimal("100")


def test_update_amount_on_paid_installment_is_rejected(db, ledger):
    _, ids = add_contract(db)
    pay(ledger, ids[0], "100")

    with pytest.raises(InvalidInstallmentStateError):
        ledger.update_installment(ids[0], COMPANY_A, InstallmentPatch(amount=Decimal("150")))


def test_patch_rejects_status_field():
    with pytest.raises(Exception):
        InstallmentPatch(status="PAGA")


# ---------------------------------------------------------------- soft delete


def test_soft_deleted_installment_leaves_active_queries(db, ledger):
    contract_id, ids = add_contract(db)

    ledger.soft_delete_installment(ids[1], COMPANY_A)

    with pytest.raises(NotFoundError):
        ledger.get_installment(ids[1], COMPANY_A)
    with pytest.raises(NotFoundError):
        ledger.soft_delete_installment(ids[1], COMPANY_A)
    assert [row.id for row in ledger.list_by_contract(contract_id, COMPANY_A)] == [ids[0], ids[2]]


@pytest.mark.parametrize("operation", [
    lambda ledger, iid: ledger.cancel_installment(iid, COMPANY_A),
    lambda ledger, iid: ledger.update_installment(
        iid, COMPANY_A, InstallmentPatch(due_date=date(2030, 1, 1), notes="x", amount=Decimal("5"))
    ),
    lambda ledger, iid: pay(ledger, iid, "10"),
])
def test_soft_deleted_installment_rejects_writes(db, ledger, operation):
    _, ids = add_contract(db)
    ledger.soft_delete_installment(ids[0], COMPANY_A)

    with pytest.raises(NotFoundError):
        operation(ledger, ids[0])

    stored = db.query(Installment).filter(Installment.id == ids[0]).populate_existing().one()
    assert stored.deleted_at is not None
    assert stored.status == InstallmentStatus.OPEN
    assert stored.due_date == date(2024, 1, 10)
    assert stored.amount == Decimal("100")
    assert stored.amount_paid == Decimal("0")
    assert stored.notes is None


# ---------------------------------------------------------------- amount limits


def test_contract_whose_installment_rounds_to_zero_is_rejected(db):
    with pytest.raises(ValueError):
        add_contract(db, installments=3, principal="0.01")

    assert db.query(Installment).count() == 0


def test_contract_total_beyond_storable_amount_is_rejected(db):
    with pytest.raises(ValueError):
        add_contract(db, installments=600, principal="100000000", rate="100")


def test_renegotiation_into_zero_cent_installments_is_rejected(db, ledger):
    contract_id, ids = add_contract(db)
    pay(ledger, ids[0], "99.99")

    with pytest.raises(ValueError):
        ledger.renegotiate_installments(contract_id, COMPANY_A, [ids[0]], 3, Decimal("0"), date(2024, 6, 1))

    installment = ledger.get_installment(ids[0], COMPANY_A)
    assert installment.status == InstallmentStatus.PARTIAL
    assert len(ledger.list_by_contract(contract_id, COMPANY_A)) == 3


@pytest.mark.parametrize("payload", [
    lambda: PaymentCreate(paid_amount=Decimal("1e30")),
    lambda: PaymentCreate(paid_amount=Decimal("10000000000")),
    lambda: InstallmentPatch(amount=Decimal("1e30")),
])
def test_amounts_beyond_storable_range_fail_validation(payload):
    with pytest.raises(ValidationError):
        payload()


# ---------------------------------------------------------------- derived status


def test_effective_status_derives_overdue(db, ledger):
    contract_id, ids = add_contract(db, installments=2, principal="200", first_due_date=date(2024, 1, 10))
    pay(ledger, ids[0], "100")

    rows = ledger.list_by_contract(contract_id, COMPANY_A, today=date(2024, 3, 1))

    assert rows[0].effective_status == InstallmentStatus.PAID
    assert rows[1].effective_status == InstallmentStatus.OVERDUE
    assert rows[1].status == InstallmentStatus.OPEN


def test_effective_status_keeps_future_installment_open(db, ledger):
    _, ids = add_contract(db, first_due_date=date(2024, 1, 10))
    installment = ledger.get_installment(ids[2], COMPANY_A)

    assert effective_status(installment, date(2024, 1, 10)) == InstallmentStatus.OPEN


# ---------------------------------------------------------------- settlement


def test_quit_contract_pays_every_open_installment(db, ledger):
    contract_id, ids = add_contract(db, installments=3)
    pay(ledger, ids[0], "100")
    pay(ledger, ids[1], "30")

    result = ledger.quit_contract(contract_id, COMPANY_A, PaymentMethod.BANK_TRANSFER)

    assert result.payments_count == 2
    assert result.closed is True
    assert get_contract(db, contract_id, COMPANY_A).status == ContractStatus.CLOSED
    second = ledger.get_installment(ids[1], COMPANY_A)
    assert second.status == InstallmentStatus.PAID
    assert second.amount_paid == Decimal("100")
    assert ledger.list_payments(ids[1], COMPANY_A)[0].paid_amount == Decimal("70")


def test_quit_contract_of_other_company_is_not_found(db, ledger):
    contract_id, _ = add_contract(db)

    with pytest.raises(NotFoundError):
        ledger.quit_contract(contract_id, COMPANY_B)


# ---------------------------------------------------------------- renegotiation


def test_renegotiation_supersedes_and_appends(db, ledger):
    contract_id, ids = add_contract(db, installments=3)
    pay(ledger, ids[1], "40")

    replacements = ledger.renegotiate_installments(
        contract_id, COMPANY_A, ids[1:], term_count=4,
        monthly_rate_percent=Decimal("0"), first_due_date=date(2024, 6, 15)
    )

    assert [inst.installment_number for inst in replacements] == [4, 5, 6, 7]
    assert all(inst.amount == Decimal("40") for inst in replacements)
    assert all(inst.origin == InstallmentOrigin.RENEGOTIATION for inst in replacements)
    assert replacements[-1].due_date == date(2024, 9, 15)
    assert ledger.get_installment(ids[1], COMPANY_A).status == InstallmentStatus.RENEGOTIATED
    assert ledger.get_installment(ids[2], COMPANY_A).status == InstallmentStatus.RENEGOTIATED
    assert ledger.get_installment(ids[0], COMPANY_A).status == InstallmentStatus.OPEN


def test_renegotiated_installment_cannot_be_canceled(db, ledger):
    contract_id, ids = add_contract(db)
    ledger.renegotiate_installments(contract_id, COMPANY_A, [ids[0]], 2, Decimal("0"), date(2024, 6, 1))

    with pytest.raises(InvalidInstallmentStateError):
        ledger.cancel_installment(ids[0], COMPANY_A)


def test_renegotiation_of_paid_installment_is_rejected(db, ledger):
    contract_id, ids = add_contract(db)
    pay(ledger, ids[0], "100")

    with pytest.raises(InvalidInstallmentStateError):
        ledger.renegotiate_installments(contract_id, COMPANY_A, [ids[0]], 2, Decimal("0"), date(2024, 6, 1))


def test_renegotiation_with_foreign_installment_is_not_found(db, ledger):
    contract_id, ids = add_contract(db, company_id=COMPANY_A)
    _, foreign_ids = add_contract(db, company_id=COMPANY_B, number="B-1")

    with pytest.raises(NotFoundError):
        ledger.renegotiate_installments(
            contract_id, COMPANY_A, [ids[0], foreign_ids[0]], 2, Decimal("0"), date(2024, 6, 1)
        )

    assert ledger.get_installment(ids[0], COMPANY_A).status == InstallmentStatus.OPEN

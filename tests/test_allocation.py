from datetime import date
from decimal import Decimal
from typing import Any, Dict

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees import invoice_service, sponsor_service
from app.api.v1.fees.schemas import AllocationItem, ManualAllocationRequest, SponsorCreate, SponsorPaymentCreate
from app.core.enums import AllocationOrder
from app.core.exceptions import ServiceError
from app.core.models import Invoice, SponsorPayment, StudentFee

from .conftest import make_award, make_fee, make_student


async def _invoiced_students(db: AsyncSession, school: Dict[str, Any], fee_structure, sponsor, totals):
    """One student per total, fees invoiced before the awards exist, awards in the given order."""
    students = [await make_student(db) for _ in totals]
    fees = [await make_fee(db, s, fee_structure, total=Decimal(t)) for s, t in zip(students, totals)]
    await invoice_service.generate_invoices(db, school["year"].id, school["term"].id)
    for student in students:
        await make_award(db, student, sponsor, school["year"].id, "full")
    return students, fees


def _payment(sponsor, amount: str, **overrides) -> SponsorPaymentCreate:
    data = {
        "sponsor_id": sponsor.id,
        "amount": Decimal(amount),
        "payment_date": date(2025, 9, 15),
        "payment_method": "BANK",
        "auto_allocate": True,
    }
    data.update(overrides)
    return SponsorPaymentCreate(**data)


@pytest.mark.asyncio
async def test_auto_allocation_is_greedy_in_award_order(
    db_session: AsyncSession, school: Dict[str, Any], fee_structure, sponsor
) -> None:
    students, fees = await _invoiced_students(
        db_session, school, fee_structure, sponsor, ["60000", "50000", "30000"]
    )

    result = await sponsor_service.record_sponsor_payment(db_session, _payment(sponsor, "100000"))

    amounts = {a.student_id: a.allocated_amount for a in result.allocations}
    assert amounts == {students[0].id: Decimal("60000"), students[1].id: Decimal("40000")}
    assert result.payment.unallocated_amount == Decimal("0")
    assert result.message == "Sponsor payment of MK 100,000.00 recorded successfully. Allocated to 2 student(s)."

    first_fee = await db_session.get(StudentFee, fees[0].id)
    second_fee = await db_session.get(StudentFee, fees[1].id)
    third_fee = await db_session.get(StudentFee, fees[2].id)
    assert first_fee.balance == Decimal("0")
    assert second_fee.balance == Decimal("10000")
    assert second_fee.amount_paid == Decimal("40000")
    assert third_fee.balance == Decimal("30000")

    invoices = {i.student_fee_id: i for i in (await db_session.execute(select(Invoice))).scalars().all()}
    assert invoices[fees[0].id].status == "paid"
    assert invoices[fees[1].id].status == "partial"
    assert invoices[fees[2].id].status == "unpaid"


@pytest.mark.asyncio
async def test_largest_balance_order(
    db_session: AsyncSession, school: Dict[str, Any], fee_structure, sponsor
) -> None:
    students, _ = await _invoiced_students(db_session, school, fee_structure, sponsor, ["30000", "80000"])

    result = await sponsor_service.record_sponsor_payment(
        db_session, _payment(sponsor, "50000", allocation_order=AllocationOrder.largest_balance)
    )

    assert [(a.student_id, a.allocated_amount) for a in result.allocations] == [(students[1].id, Decimal("50000"))]


@pytest.mark.asyncio
async def test_calculated_share_caps_allocation(
    db_session: AsyncSession, school: Dict[str, Any], fee_structure, sponsor
) -> None:
    student = await make_student(db_session)
    await make_fee(db_session, student, fee_structure, total=Decimal("60000"))
    await make_award(db_session, student, sponsor, school["year"].id, "full", calculated_aid_amount=Decimal("20000"))

    result = await sponsor_service.record_sponsor_payment(db_session, _payment(sponsor, "50000"))

    assert [a.allocated_amount for a in result.allocations] == [Decimal("20000")]
    assert result.payment.unallocated_amount == Decimal("30000")


@pytest.mark.asyncio
async def test_award_resolves_to_earliest_due_fee_of_its_term(
    db_session: AsyncSession, school: Dict[str, Any], fee_structure, sponsor
) -> None:
    student = await make_student(db_session)
    later = await make_fee(db_session, student, fee_structure, total=Decimal("10000"))
    later.due_date = date(2025, 11, 1)
    earlier = await make_fee(db_session, student, fee_structure, total=Decimal("10000"))
    earlier.due_date = date(2025, 9, 10)
    await db_session.commit()
    await make_award(db_session, student, sponsor, school["year"].id, "full", term_id=school["term"].id)

    claims = await sponsor_service.resolve_award_claims(db_session, sponsor.id)

    assert len(claims) == 1
    assert claims[0].fee.id == earlier.id


@pytest.mark.asyncio
async def test_expired_and_inactive_awards_do_not_claim(
    db_session: AsyncSession, school: Dict[str, Any], fee_structure, sponsor
) -> None:
    expired = await make_student(db_session)
    pending = await make_student(db_session)
    for s in (expired, pending):
        await make_fee(db_session, s, fee_structure)
    await make_award(db_session, expired, sponsor, school["year"].id, "full", valid_until=date(2025, 12, 31))
    await make_award(db_session, pending, sponsor, school["year"].id, "full", status="pending")

    claims = await sponsor_service.resolve_award_claims(db_session, sponsor.id, on=date(2026, 1, 5))

    assert claims == []


@pytest.mark.asyncio
async def test_payment_without_auto_allocation_stays_unallocated(
    db_session: AsyncSession, sponsor
) -> None:
    result = await sponsor_service.record_sponsor_payment(
        db_session, _payment(sponsor, "2500.5", auto_allocate=False)
    )

    assert result.allocations == []
    assert result.payment.unallocated_amount == Decimal("2500.5")
    assert result.message == "Sponsor payment of MK 2,500.50 recorded successfully"


@pytest.mark.asyncio
async def test_manual_allocation_limits(
    db_session: AsyncSession, school: Dict[str, Any], fee_structure, sponsor
) -> None:
    student = await make_student(db_session)
    fee = await make_fee(db_session, student, fee_structure, total=Decimal("40000"))
    recorded = await sponsor_service.record_sponsor_payment(
        db_session, _payment(sponsor, "30000", auto_allocate=False)
    )
    payment_id = recorded.payment.id

    with pytest.raises(ServiceError) as exc_info:
        await sponsor_service.allocate_sponsor_payment(
            db_session,
            payment_id,
            ManualAllocationRequest(
                allocations=[AllocationItem(student_id=student.id, student_fee_id=fee.id, allocated_amount=Decimal("35000"))]
            ),
        )
    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Total allocation (MK 35,000.00) exceeds unallocated amount (MK 30,000.00)"

    allocations = await sponsor_service.allocate_sponsor_payment(
        db_session,
        payment_id,
        ManualAllocationRequest(
            allocations=[AllocationItem(student_id=student.id, student_fee_id=fee.id, allocated_amount=Decimal("12000"))]
        ),
    )

    assert allocations[0].allocation_date == date(2025, 9, 15)
    payment = await db_session.get(SponsorPayment, payment_id)
    assert payment.unallocated_amount == Decimal("18000")
    await db_session.refresh(fee)
    assert fee.balance == Decimal("28000")
    listed = await sponsor_service.get_payment_allocations(db_session, payment_id)
    assert [a.allocated_amount for a in listed] == [Decimal("12000")]


@pytest.mark.asyncio
async def test_manual_allocation_rejects_foreign_fee(
    db_session: AsyncSession, school: Dict[str, Any], fee_structure, sponsor
) -> None:
    owner = await make_student(db_session)
    other = await make_student(db_session)
    fee = await make_fee(db_session, owner, fee_structure)
    recorded = await sponsor_service.record_sponsor_payment(db_session, _payment(sponsor, "1000", auto_allocate=False))

    with pytest.raises(ServiceError) as exc_info:
        await sponsor_service.allocate_sponsor_payment(
            db_session,
            recorded.payment.id,
            ManualAllocationRequest(
                allocations=[AllocationItem(student_id=other.id, student_fee_id=fee.id, allocated_amount=Decimal("500"))]
            ),
        )
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_sponsor_names_are_unique(db_session: AsyncSession) -> None:
    await sponsor_service.create_sponsor(db_session, SponsorCreate(name="Rotary Club"))
    with pytest.raises(ServiceError) as exc_info:
        await sponsor_service.create_sponsor(db_session, SponsorCreate(name="Rotary Club"))
    assert exc_info.value.status_code == 409

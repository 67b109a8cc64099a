"""
Sponsors, sponsor payments and the allocation engine.

Auto-allocation is a single greedy pass over the sponsor's qualifying awards in an explicit
order (AllocationOrder). Each award is resolved to exactly one outstanding student fee or skipped.
Every allocation decrements the payment's unallocated_amount and lands on the fee and its
invoice as a payment, all in one commit.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import QUALIFYING_AID_STATUSES, AllocationOrder
from app.core.exceptions import ServiceError
from app.core.models import (
    FinancialAidType,
    Invoice,
    Sponsor,
    SponsorPayment,
    SponsorPaymentAllocation,
    StudentFee,
    StudentFinancialAid,
)

from .aid_service import ZERO, to_decimal
from .invoice_service import invoice_status, money
from .schemas import (
    AllocationResponse,
    FinancialAidTypeCreate,
    FinancialAidTypeResponse,
    ManualAllocationRequest,
    SponsorCreate,
    SponsorPaymentCreate,
    SponsorPaymentResponse,
    SponsorPaymentResult,
    SponsorResponse,
)

logger = logging.getLogger(__name__)


# --- Sponsors and aid types ---
async def create_sponsor(db: AsyncSession, payload: SponsorCreate) -> SponsorResponse:
    sponsor = Sponsor(name=payload.name.strip(), contact_email=payload.contact_email, is_active=True)
    db.add(sponsor)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("A sponsor with this name already exists", status.HTTP_409_CONFLICT)
    await db.refresh(sponsor)
    return SponsorResponse.model_validate(sponsor)


async def list_sponsors(db: AsyncSession, active_only: bool = True) -> List[SponsorResponse]:
    stmt = select(Sponsor)
    if active_only:
        stmt = stmt.where(Sponsor.is_active.is_(True))
    result = await db.execute(stmt.order_by(Sponsor.name))
    return [SponsorResponse.model_validate(s) for s in result.scalars().all()]


async def create_financial_aid_type(db: AsyncSession, payload: FinancialAidTypeCreate) -> FinancialAidTypeResponse:
    sponsor = await db.get(Sponsor, payload.sponsor_id)
    if not sponsor:
        raise ServiceError("Sponsor not found", status.HTTP_404_NOT_FOUND)
    aid_type = FinancialAidType(
        sponsor_id=payload.sponsor_id,
        name=payload.name.strip(),
        description=payload.description,
        coverage_type=payload.coverage_type.value,
        coverage_percentage=payload.coverage_percentage,
        coverage_amount=payload.coverage_amount,
        covered_items=payload.covered_items,
        is_active=True,
    )
    db.add(aid_type)
    await db.commit()
    await db.refresh(aid_type)
    return FinancialAidTypeResponse.model_validate(aid_type)


# --- Applying money to a fee ---
async def apply_payment_to_fee(db: AsyncSession, fee: StudentFee, amount: Decimal) -> None:
    """Record amount as paid on the fee and on its invoice. Does not commit."""
    fee.amount_paid = to_decimal(fee.amount_paid) + amount
    fee.balance = to_decimal(fee.balance) - amount
    result = await db.execute(select(Invoice).where(Invoice.student_fee_id == fee.id))
    invoice = result.scalars().first()
    if invoice is not None:
        invoice.amount_paid = to_decimal(invoice.amount_paid) + amount
        invoice.balance = to_decimal(invoice.balance) - amount
        invoice.status = invoice_status(invoice.balance, invoice.amount_paid).value


# --- Auto allocation ---
@dataclass
class AwardClaim:
    """A qualifying award resolved to the single fee it can pay."""

    award: StudentFinancialAid
    fee: StudentFee


async def resolve_award_claims(
    db: AsyncSession,
    sponsor_id: UUID,
    order: AllocationOrder = AllocationOrder.award_date,
    on: Optional[date] = None,
) -> List[AwardClaim]:
    """
    Qualifying awards of the sponsor (active/approved, valid_until empty or not before `on`),
    each paired with the student's earliest-due outstanding fee in the award's year (and term,
    when the award has one). Awards with nothing outstanding are dropped.
    """
    on = on or date.today()
    result = await db.execute(
        select(StudentFinancialAid)
        .where(
            StudentFinancialAid.sponsor_id == sponsor_id,
            StudentFinancialAid.status.in_(QUALIFYING_AID_STATUSES),
            or_(StudentFinancialAid.valid_until.is_(None), StudentFinancialAid.valid_until >= on),
        )
        .order_by(StudentFinancialAid.created_at, StudentFinancialAid.id)
    )
    awards = list(result.scalars().all())
    if not awards:
        return []

    fees_result = await db.execute(
        select(StudentFee)
        .where(
            StudentFee.student_id.in_(list({a.student_id for a in awards})),
            StudentFee.balance > 0,
        )
        .order_by(StudentFee.due_date.is_(None), StudentFee.due_date, StudentFee.created_at, StudentFee.id)
    )
    fees_by_student: Dict[UUID, List[StudentFee]] = {}
    for fee in fees_result.scalars().all():
        fees_by_student.setdefault(fee.student_id, []).append(fee)

    claims: List[AwardClaim] = []
    for award in awards:
        fee = next(
            (
                f
                for f in fees_by_student.get(award.student_id, [])
                if f.academic_year_id == award.academic_year_id
                and (award.term_id is None or f.term_id == award.term_id)
            ),
            None,
        )
        if fee is None:
            logger.debug("Aid %s has no outstanding fee; skipped", award.id)
            continue
        claims.append(AwardClaim(award=award, fee=fee))

    if order == AllocationOrder.largest_balance:
        # stable sort keeps award_date order between equal balances
        claims.sort(key=lambda c: to_decimal(c.fee.balance), reverse=True)
    return claims


async def auto_allocate(
    db: AsyncSession,
    payment: SponsorPayment,
    order: AllocationOrder = AllocationOrder.award_date,
    allocated_by: Optional[UUID] = None,
    on: Optional[date] = None,
) -> List[AllocationResponse]:
    """
    Greedy single pass: each award gets min(calculated aid or fee balance, remaining, fee balance).
    Stops as soon as the payment is used up; later students wait for the next payment.
    """
    claims = await resolve_award_claims(db, payment.sponsor_id, order, on)
    if not claims:
        logger.warning("No students with active aid found for sponsor %s", payment.sponsor_id)
        return []

    remaining = to_decimal(payment.unallocated_amount)
    allocations: List[SponsorPaymentAllocation] = []
    for claim in claims:
        if remaining <= 0:
            break
        balance = to_decimal(claim.fee.balance)
        target = to_decimal(claim.award.calculated_aid_amount) or balance
        amount = min(target, remaining, balance)
        logger.debug("Student %s: allocate %s (balance %s)", claim.award.student_id, amount, balance)
        if amount <= 0:
            continue
        allocation = SponsorPaymentAllocation(
            sponsor_payment_id=payment.id,
            student_id=claim.award.student_id,
            student_fee_id=claim.fee.id,
            allocated_amount=amount,
            allocation_date=payment.payment_date,
            allocated_by=allocated_by,
        )
        db.add(allocation)
        allocations.append(allocation)
        await apply_payment_to_fee(db, claim.fee, amount)
        remaining -= amount

    if not allocations:
        logger.warning("No allocations to create for sponsor payment %s (all amounts were 0)", payment.id)
        return []

    payment.unallocated_amount = remaining
    await db.commit()
    for allocation in allocations:
        await db.refresh(allocation)
    logger.info("Sponsor payment %s allocated to %s student(s)", payment.id, len(allocations))
    return [AllocationResponse.model_validate(a) for a in allocations]


# --- Payments ---
async def record_sponsor_payment(
    db: AsyncSession,
    payload: SponsorPaymentCreate,
    recorded_by: Optional[UUID] = None,
) -> SponsorPaymentResult:
    sponsor = await db.get(Sponsor, payload.sponsor_id)
    if not sponsor:
        raise ServiceError("Sponsor not found", status.HTTP_404_NOT_FOUND)
    if payload.amount <= 0:
        raise ServiceError("Payment amount must be greater than zero", status.HTTP_400_BAD_REQUEST)

    payment = SponsorPayment(
        sponsor_id=payload.sponsor_id,
        amount=payload.amount,
        unallocated_amount=payload.amount,
        payment_date=payload.payment_date,
        payment_method=payload.payment_method,
        reference_number=payload.reference_number,
        notes=payload.notes,
        recorded_by=recorded_by,
    )
    db.add(payment)
    await db.commit()
    await db.refresh(payment)

    allocations: List[AllocationResponse] = []
    if payload.auto_allocate:
        allocations = await auto_allocate(db, payment, payload.allocation_order, allocated_by=recorded_by)
        await db.refresh(payment)

    message = f"Sponsor payment of {money(payload.amount)} recorded successfully"
    if allocations:
        message += f". Allocated to {len(allocations)} student(s)."
    return SponsorPaymentResult(
        payment=SponsorPaymentResponse.model_validate(payment),
        allocations=allocations,
        message=message,
    )


async def allocate_sponsor_payment(
    db: AsyncSession,
    payment_id: UUID,
    payload: ManualAllocationRequest,
    allocated_by: Optional[UUID] = None,
) -> List[AllocationResponse]:
    """Admin-chosen amounts. Only the payment's unallocated_amount limits the total."""
    payment = await db.get(SponsorPayment, payment_id)
    if not payment:
        raise ServiceError("Sponsor payment not found", status.HTTP_404_NOT_FOUND)

    total = sum((a.allocated_amount for a in payload.allocations), ZERO)
    unallocated = to_decimal(payment.unallocated_amount)
    if total > unallocated:
        raise ServiceError(
            f"Total allocation ({money(total)}) exceeds unallocated amount ({money(unallocated)})",
            status.HTTP_400_BAD_REQUEST,
        )

    allocations: List[SponsorPaymentAllocation] = []
    for item in payload.allocations:
        fee = await db.get(StudentFee, item.student_fee_id)
        if not fee or fee.student_id != item.student_id:
            raise ServiceError("Student fee record not found", status.HTTP_404_NOT_FOUND)
        allocation = SponsorPaymentAllocation(
            sponsor_payment_id=payment.id,
            student_id=item.student_id,
            student_fee_id=item.student_fee_id,
            allocated_amount=item.allocated_amount,
            allocation_date=item.allocation_date or payment.payment_date,
            allocated_by=allocated_by,
        )
        db.add(allocation)
        allocations.append(allocation)
        await apply_payment_to_fee(db, fee, item.allocated_amount)

    payment.unallocated_amount = unallocated - total
    await db.commit()
    for allocation in allocations:
        await db.refresh(allocation)
    return [AllocationResponse.model_validate(a) for a in allocations]


async def list_sponsor_payments(
    db: AsyncSession,
    sponsor_id: Optional[UUID] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> List[SponsorPaymentResponse]:
    stmt = select(SponsorPayment)
    if sponsor_id is not None:
        stmt = stmt.where(SponsorPayment.sponsor_id == sponsor_id)
    if from_date is not None:
        stmt = stmt.where(SponsorPayment.payment_date >= from_date)
    if to_date is not None:
        stmt = stmt.where(SponsorPayment.payment_date <= to_date)
    result = await db.execute(stmt.order_by(SponsorPayment.payment_date.desc()))
    return [SponsorPaymentResponse.model_validate(p) for p in result.scalars().all()]


async def get_payment_allocations(db: AsyncSession, payment_id: UUID) -> List[AllocationResponse]:
    result = await db.execute(
        select(SponsorPaymentAllocation)
        .where(SponsorPaymentAllocation.sponsor_payment_id == payment_id)
        .order_by(SponsorPaymentAllocation.allocation_date.desc(), SponsorPaymentAllocation.created_at)
    )
    return [AllocationResponse.model_validate(a) for a in result.scalars().all()]

"""
Aid calculator and aid award management.

An award qualifies for a billing period when its status is active or approved, it belongs to the
period's academic year, its term is empty (whole year) or the period's term, and the period's
start date lies inside [valid_from, valid_until] (an empty bound is open).
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import OPEN_AID_STATUSES, QUALIFYING_AID_STATUSES, AidStatus, CoverageType
from app.core.exceptions import ServiceError
from app.core.models import (
    AcademicYear,
    FinancialAidType,
    Sponsor,
    Student,
    StudentFinancialAid,
    Term,
)

from .schemas import (
    ActiveAid,
    AidAwardCreate,
    AidAwardResponse,
    AidRevoke,
    AidStatusUpdate,
    BulkAidAssign,
    BulkAidAssignResult,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

LineItem = Tuple[str, Decimal]


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def quantize(amount: Decimal) -> Decimal:
    return to_decimal(amount).quantize(settings.money_quantum)


@dataclass
class AidComputation:
    amount: Decimal
    awards: List[StudentFinancialAid] = field(default_factory=list)
    sponsor_names: List[str] = field(default_factory=list)


async def period_start(db: AsyncSession, academic_year_id: UUID, term_id: Optional[UUID]) -> Optional[date]:
    """Start date of the billing period: the term's when given, otherwise the academic year's."""
    if term_id is not None:
        term = await db.get(Term, term_id)
        if term is not None:
            return term.start_date
    year = await db.get(AcademicYear, academic_year_id)
    return year.start_date if year is not None else None


def _within_window(award: StudentFinancialAid, on: Optional[date]) -> bool:
    if on is None:
        return True
    if award.valid_from is not None and on < award.valid_from:
        return False
    if award.valid_until is not None and on > award.valid_until:
        return False
    return True


async def _qualifying_awards(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID],
) -> List[Tuple[StudentFinancialAid, str]]:
    stmt = (
        select(StudentFinancialAid, Sponsor.name)
        .join(Sponsor, StudentFinancialAid.sponsor_id == Sponsor.id)
        .where(
            StudentFinancialAid.student_id == student_id,
            StudentFinancialAid.academic_year_id == academic_year_id,
            StudentFinancialAid.status.in_(QUALIFYING_AID_STATUSES),
        )
        .order_by(StudentFinancialAid.created_at, StudentFinancialAid.id)
    )
    if term_id is None:
        stmt = stmt.where(StudentFinancialAid.term_id.is_(None))
    else:
        stmt = stmt.where(or_(StudentFinancialAid.term_id.is_(None), StudentFinancialAid.term_id == term_id))
    result = await db.execute(stmt)
    on = await period_start(db, academic_year_id, term_id)
    return [(award, name) for award, name in result.all() if _within_window(award, on)]


def coverage_amount(award: StudentFinancialAid, total_fees: Decimal, line_items: Sequence[LineItem] = ()) -> Decimal:
    """What one award covers of total_fees, before the overall clamp."""
    coverage = award.coverage_type
    if coverage == CoverageType.full.value:
        return total_fees
    if coverage == CoverageType.percentage.value:
        return total_fees * to_decimal(award.coverage_percentage) / Decimal(100)
    if coverage == CoverageType.fixed_amount.value:
        return min(to_decimal(award.coverage_amount), total_fees)
    if coverage == CoverageType.specific_items.value:
        covered = set(award.covered_items or [])
        return sum((to_decimal(amount) for name, amount in line_items if name in covered), ZERO)
    logger.warning("Unknown coverage type %r on aid %s", coverage, award.id)
    return ZERO


def total_coverage(awards: Iterable[StudentFinancialAid], total_fees: Decimal, line_items: Sequence[LineItem] = ()) -> Decimal:
    """Sum of coverages clamped to [0, total_fees]."""
    total_fees = max(to_decimal(total_fees), ZERO)
    summed = sum((coverage_amount(a, total_fees, line_items) for a in awards), ZERO)
    return quantize(min(max(summed, ZERO), total_fees))


async def compute_aid(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID],
    total_fees: Decimal,
    line_items: Sequence[LineItem] = (),
) -> AidComputation:
    """
    Aid for one student's bill. Writes the equal per-award share onto calculated_aid_amount of
    every qualifying award when aid is positive. Does not commit; caller must commit.
    """
    rows = await _qualifying_awards(db, student_id, academic_year_id, term_id)
    awards = [award for award, _ in rows]
    amount = total_coverage(awards, total_fees, line_items)
    if amount > 0:
        share = quantize(amount / len(awards))
        for award in awards:
            award.calculated_aid_amount = share
    return AidComputation(amount=amount, awards=awards, sponsor_names=[name for _, name in rows])


async def get_active_student_aid(
    db: AsyncSession,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID] = None,
) -> List[ActiveAid]:
    rows = await _qualifying_awards(db, student_id, academic_year_id, term_id)
    return [
        ActiveAid(
            aid_id=award.id,
            sponsor_id=award.sponsor_id,
            sponsor_name=name,
            coverage_type=award.coverage_type,
            calculated_aid_amount=award.calculated_aid_amount,
        )
        for award, name in rows
    ]


# --- Award management ---
def _check_coverage(coverage_type: str, percentage, amount, items) -> None:
    if coverage_type == CoverageType.percentage.value and percentage is None:
        raise ServiceError("coverage_percentage is required for percentage aid", status.HTTP_400_BAD_REQUEST)
    if coverage_type == CoverageType.fixed_amount.value and amount is None:
        raise ServiceError("coverage_amount is required for fixed_amount aid", status.HTTP_400_BAD_REQUEST)
    if coverage_type == CoverageType.specific_items.value and not items:
        raise ServiceError("covered_items is required for specific_items aid", status.HTTP_400_BAD_REQUEST)


async def _get_active_aid_type(db: AsyncSession, aid_type_id: UUID) -> FinancialAidType:
    aid_type = await db.get(FinancialAidType, aid_type_id)
    if not aid_type or not aid_type.is_active:
        raise ServiceError("Financial aid type not found or inactive", status.HTTP_404_NOT_FOUND)
    return aid_type


async def _has_open_award(
    db: AsyncSession,
    student_id: UUID,
    sponsor_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID],
) -> bool:
    stmt = select(StudentFinancialAid.id).where(
        StudentFinancialAid.student_id == student_id,
        StudentFinancialAid.sponsor_id == sponsor_id,
        StudentFinancialAid.academic_year_id == academic_year_id,
        StudentFinancialAid.status.in_(OPEN_AID_STATUSES),
    )
    if term_id is None:
        stmt = stmt.where(StudentFinancialAid.term_id.is_(None))
    else:
        stmt = stmt.where(StudentFinancialAid.term_id == term_id)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


def _new_award(
    aid_type: FinancialAidType,
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID],
    assigned_by: Optional[UUID],
    **fields,
) -> StudentFinancialAid:
    """New awards are approved on assignment."""
    return StudentFinancialAid(
        student_id=student_id,
        sponsor_id=aid_type.sponsor_id,
        financial_aid_type_id=aid_type.id,
        academic_year_id=academic_year_id,
        term_id=term_id,
        status=AidStatus.approved.value,
        approved_by=assigned_by,
        approved_at=datetime.now(timezone.utc),
        assigned_by=assigned_by,
        **fields,
    )


async def assign_aid_to_student(
    db: AsyncSession,
    payload: AidAwardCreate,
    assigned_by: Optional[UUID] = None,
) -> AidAwardResponse:
    student = await db.get(Student, payload.student_id)
    if not student:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    aid_type = await _get_active_aid_type(db, payload.financial_aid_type_id)

    if await _has_open_award(db, payload.student_id, aid_type.sponsor_id, payload.academic_year_id, payload.term_id):
        raise ServiceError(
            "Student already has active aid from this sponsor for this period",
            status.HTTP_409_CONFLICT,
        )

    coverage_type = payload.coverage_type.value if payload.coverage_type else aid_type.coverage_type
    percentage = payload.coverage_percentage if payload.coverage_percentage is not None else aid_type.coverage_percentage
    amount = payload.coverage_amount if payload.coverage_amount is not None else aid_type.coverage_amount
    items = payload.covered_items if payload.covered_items is not None else aid_type.covered_items
    _check_coverage(coverage_type, percentage, amount, items)

    award = _new_award(
        aid_type,
        payload.student_id,
        payload.academic_year_id,
        payload.term_id,
        assigned_by,
        coverage_type=coverage_type,
        coverage_percentage=percentage,
        coverage_amount=amount,
        covered_items=items,
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
        conditions=payload.conditions,
        notes=payload.notes,
    )
    db.add(award)
    await db.commit()
    await db.refresh(award)
    logger.info("Assigned aid type %s to student %s", aid_type.id, payload.student_id)
    return AidAwardResponse.model_validate(award)


async def bulk_assign_aid(
    db: AsyncSession,
    payload: BulkAidAssign,
    assigned_by: Optional[UUID] = None,
) -> BulkAidAssignResult:
    """Assign one aid type to many students with the type's default coverage. Existing awards are skipped."""
    aid_type = await _get_active_aid_type(db, payload.financial_aid_type_id)
    assigned = failed = 0
    for student_id in dict.fromkeys(payload.student_ids):
        if not await db.get(Student, student_id) or await _has_open_award(
            db, student_id, aid_type.sponsor_id, payload.academic_year_id, payload.term_id
        ):
            failed += 1
            continue
        db.add(
            _new_award(
                aid_type,
                student_id,
                payload.academic_year_id,
                payload.term_id,
                assigned_by,
                coverage_type=aid_type.coverage_type,
                coverage_percentage=aid_type.coverage_percentage,
                coverage_amount=aid_type.coverage_amount,
                covered_items=aid_type.covered_items,
                valid_from=payload.valid_from,
                valid_until=payload.valid_until,
                conditions=payload.conditions,
                notes=payload.notes,
            )
        )
        assigned += 1
    await db.commit()
    message = f"Successfully assigned aid to {assigned} student(s)."
    if failed:
        message += f" {failed} failed."
    return BulkAidAssignResult(assigned_count=assigned, failed_count=failed, message=message)


async def _get_award(db: AsyncSession, aid_id: UUID) -> StudentFinancialAid:
    award = await db.get(StudentFinancialAid, aid_id)
    if not award:
        raise ServiceError("Financial aid award not found", status.HTTP_404_NOT_FOUND)
    return award


async def update_aid_status(
    db: AsyncSession,
    aid_id: UUID,
    payload: AidStatusUpdate,
    updated_by: Optional[UUID] = None,
) -> AidAwardResponse:
    award = await _get_award(db, aid_id)
    award.status = payload.status.value
    if payload.status == AidStatus.approved:
        award.approved_by = updated_by
        award.approved_at = datetime.now(timezone.utc)
    elif payload.status == AidStatus.rejected:
        award.rejection_reason = payload.rejection_reason
    await db.commit()
    await db.refresh(award)
    return AidAwardResponse.model_validate(award)


async def revoke_aid(db: AsyncSession, aid_id: UUID, payload: AidRevoke) -> AidAwardResponse:
    """Suspend an award; the reason is kept in notes."""
    award = await _get_award(db, aid_id)
    award.status = AidStatus.suspended.value
    award.notes = payload.reason
    await db.commit()
    await db.refresh(award)
    logger.info("Revoked aid %s: %s", aid_id, payload.reason)
    return AidAwardResponse.model_validate(award)


async def list_aid_awards(
    db: AsyncSession,
    student_id: Optional[UUID] = None,
    sponsor_id: Optional[UUID] = None,
    academic_year_id: Optional[UUID] = None,
    status_filter: Optional[AidStatus] = None,
) -> List[AidAwardResponse]:
    stmt = select(StudentFinancialAid)
    if student_id is not None:
        stmt = stmt.where(StudentFinancialAid.student_id == student_id)
    if sponsor_id is not None:
        stmt = stmt.where(StudentFinancialAid.sponsor_id == sponsor_id)
    if academic_year_id is not None:
        stmt = stmt.where(StudentFinancialAid.academic_year_id == academic_year_id)
    if status_filter is not None:
        stmt = stmt.where(StudentFinancialAid.status == status_filter.value)
    result = await db.execute(stmt.order_by(StudentFinancialAid.created_at.desc()))
    return [AidAwardResponse.model_validate(a) for a in result.scalars().all()]

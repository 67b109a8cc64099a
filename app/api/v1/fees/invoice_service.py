"""
Invoice generator.

One invoice per student fee per (academic year, term). Fees that already have an invoice for
the period are filtered out, so a second run creates nothing. Line items are a snapshot of the
fee structure taken after the invoices are committed; a snapshot failure is logged and leaves
the invoices in place.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import InvoiceStatus
from app.core.exceptions import ServiceError
from app.core.models import FeeStructure, FeeStructureItem, Invoice, InvoiceItem, StudentFee

from .aid_service import ZERO, compute_aid, quantize, to_decimal
from .schemas import (
    ApplyAidRequest,
    ApplyAidResult,
    GeneratedInvoice,
    InvoiceGenerationResult,
    InvoicePreview,
)

logger = logging.getLogger(__name__)


def invoice_status(balance: Decimal, amount_paid: Decimal) -> InvoiceStatus:
    """paid when nothing is owed; partial once any payment has landed; aid alone never makes it partial."""
    if balance <= 0:
        return InvoiceStatus.paid
    if amount_paid > 0:
        return InvoiceStatus.partial
    return InvoiceStatus.unpaid


def money(amount: Decimal) -> str:
    return f"{settings.currency_label} {quantize(amount):,}"


async def next_invoice_sequence(db: AsyncSession, year: int) -> int:
    prefix = f"{settings.invoice_number_prefix}-{year}-"
    result = await db.execute(select(func.count(Invoice.id)).where(Invoice.invoice_number.like(f"{prefix}%")))
    return (result.scalar() or 0) + 1


def format_invoice_number(year: int, sequence: int) -> str:
    return f"{settings.invoice_number_prefix}-{year}-{sequence:06d}"


async def _load_period(db: AsyncSession, academic_year_id: UUID, term_id: UUID):
    fees_result = await db.execute(
        select(StudentFee)
        .where(StudentFee.academic_year_id == academic_year_id, StudentFee.term_id == term_id)
        .order_by(StudentFee.created_at, StudentFee.id)
    )
    invoiced_result = await db.execute(
        select(Invoice.student_fee_id).where(
            Invoice.academic_year_id == academic_year_id,
            Invoice.term_id == term_id,
        )
    )
    return list(fees_result.scalars().all()), set(invoiced_result.scalars().all())


async def _items_by_structure(db: AsyncSession, structure_ids: Iterable[UUID]) -> Dict[UUID, List[FeeStructureItem]]:
    ids = set(structure_ids)
    grouped: Dict[UUID, List[FeeStructureItem]] = defaultdict(list)
    if not ids:
        return grouped
    result = await db.execute(
        select(FeeStructureItem)
        .where(FeeStructureItem.fee_structure_id.in_(ids))
        .order_by(FeeStructureItem.display_order, FeeStructureItem.item_name)
    )
    for item in result.scalars().all():
        grouped[item.fee_structure_id].append(item)
    return grouped


def _line_items(items: List[FeeStructureItem]):
    return [(i.item_name, to_decimal(i.amount)) for i in items]


async def generate_invoices(
    db: AsyncSession,
    academic_year_id: UUID,
    term_id: UUID,
    generated_by: Optional[UUID] = None,
) -> InvoiceGenerationResult:
    try:
        fees, invoiced = await _load_period(db, academic_year_id, term_id)
    except SQLAlchemyError as e:
        logger.error("Error fetching student fees: %s", e)
        raise ServiceError("Failed to fetch student fees") from e

    if not fees:
        raise ServiceError(
            "No student fees found for this term. Please assign fees first.",
            status.HTTP_404_NOT_FOUND,
        )

    to_invoice = [f for f in fees if f.id not in invoiced]
    skipped = len(fees) - len(to_invoice)
    if not to_invoice:
        return InvoiceGenerationResult(
            created=0,
            skipped=skipped,
            total_amount=ZERO,
            message=f"All {len(fees)} student fees already have invoices generated",
        )

    try:
        items = await _items_by_structure(db, (f.fee_structure_id for f in to_invoice))
        today = date.today()
        sequence = await next_invoice_sequence(db, today.year)

        drafts: List[Invoice] = []
        total_amount = ZERO
        for fee in to_invoice:
            total = to_decimal(fee.total_amount)
            aid = await compute_aid(
                db,
                fee.student_id,
                fee.academic_year_id,
                fee.term_id,
                total,
                _line_items(items.get(fee.fee_structure_id, [])),
            )
            balance = total - aid.amount
            if aid.amount > 0:
                fee.discount_amount = aid.amount
                fee.discount_reason = f"Financial Aid: {', '.join(aid.sponsor_names) or 'Financial Aid'}"
                fee.balance = balance

            invoice = Invoice(
                id=uuid.uuid4(),
                invoice_number=format_invoice_number(today.year, sequence),
                student_fee_id=fee.id,
                student_id=fee.student_id,
                academic_year_id=fee.academic_year_id,
                term_id=fee.term_id,
                invoice_date=today,
                due_date=fee.due_date,
                total_amount=total,
                amount_paid=ZERO,
                balance=balance,
                status=(InvoiceStatus.paid if balance <= 0 else InvoiceStatus.unpaid).value,
                notes=f"Financial aid applied: {money(aid.amount)}" if aid.amount > 0 else None,
                generated_by=generated_by,
            )
            sequence += 1
            db.add(invoice)
            drafts.append(invoice)
            total_amount += total

        created = [(inv.id, inv.invoice_number, inv.student_fee_id) for inv in drafts]
        structure_of = {f.id: f.fee_structure_id for f in to_invoice}
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Error creating invoices: %s", e)
        raise ServiceError("Failed to create invoices") from e

    await _snapshot_items(db, created, structure_of, items)

    message = f"Successfully generated {len(created)} invoice{'s' if len(created) != 1 else ''}"
    if skipped:
        message += f". Skipped {skipped} that already had invoices."
    logger.info("Invoice generation for year %s term %s: %s", academic_year_id, term_id, message)
    return InvoiceGenerationResult(
        created=len(created),
        skipped=skipped,
        total_amount=quantize(total_amount),
        invoices=[GeneratedInvoice(invoice_number=number, student_fee_id=fee_id) for _, number, fee_id in created],
        message=message,
    )


async def _snapshot_items(db: AsyncSession, created, structure_of, items) -> None:
    rows = [
        InvoiceItem(
            invoice_id=invoice_id,
            item_name=item.item_name,
            description=item.description,
            quantity=1,
            unit_price=item.amount,
            total_amount=item.amount,
        )
        for invoice_id, _, fee_id in created
        for item in items.get(structure_of[fee_id], [])
    ]
    if not rows:
        return
    try:
        db.add_all(rows)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Error creating invoice items (invoices kept)")


async def preview_invoice_generation(db: AsyncSession, academic_year_id: UUID, term_id: UUID) -> InvoicePreview:
    """Counts and amount that generate_invoices would produce. No writes."""
    fees, invoiced = await _load_period(db, academic_year_id, term_id)
    if not fees:
        raise ServiceError("No student fees found for this term", status.HTTP_404_NOT_FOUND)
    to_invoice = [f for f in fees if f.id not in invoiced]

    structure_ids = {f.fee_structure_id for f in to_invoice}
    student_types: Dict[UUID, Optional[str]] = {}
    if structure_ids:
        result = await db.execute(
            select(FeeStructure.id, FeeStructure.student_type).where(FeeStructure.id.in_(structure_ids))
        )
        student_types = dict(result.all())

    return InvoicePreview(
        total_invoices=len(to_invoice),
        internal_count=sum(1 for f in to_invoice if student_types.get(f.fee_structure_id) == "internal"),
        external_count=sum(1 for f in to_invoice if student_types.get(f.fee_structure_id) == "external"),
        total_amount=quantize(sum((to_decimal(f.total_amount) for f in to_invoice), ZERO)),
        already_generated=len(fees) - len(to_invoice),
    )


async def apply_aid_to_invoice(db: AsyncSession, payload: ApplyAidRequest) -> ApplyAidResult:
    """Re-run the aid calculator for a fee that was invoiced before its aid was assigned."""
    stmt = select(StudentFee).where(
        StudentFee.student_id == payload.student_id,
        StudentFee.academic_year_id == payload.academic_year_id,
    )
    if payload.term_id is None:
        stmt = stmt.where(StudentFee.term_id.is_(None))
    else:
        stmt = stmt.where(StudentFee.term_id == payload.term_id)
    fee = (await db.execute(stmt)).scalars().first()
    if not fee:
        raise ServiceError("Student fee record not found", status.HTTP_404_NOT_FOUND)

    items = await _items_by_structure(db, [fee.fee_structure_id])
    total = to_decimal(fee.total_amount)
    aid = await compute_aid(
        db,
        payload.student_id,
        payload.academic_year_id,
        payload.term_id,
        total,
        _line_items(items.get(fee.fee_structure_id, [])),
    )
    if not aid.awards:
        raise ServiceError("No active financial aid found for this student", status.HTTP_404_NOT_FOUND)
    if aid.amount <= 0:
        raise ServiceError("No aid amount to apply", status.HTTP_400_BAD_REQUEST)

    new_balance = total - to_decimal(fee.amount_paid) - aid.amount
    fee.discount_amount = aid.amount
    fee.discount_reason = "Financial Aid Applied"
    fee.balance = new_balance

    invoice = (
        await db.execute(select(Invoice).where(Invoice.student_fee_id == fee.id))
    ).scalars().first()
    new_status = None
    if invoice is not None:
        invoice_paid = to_decimal(invoice.amount_paid)
        invoice_balance = to_decimal(invoice.total_amount) - invoice_paid - aid.amount
        new_status = invoice_status(invoice_balance, invoice_paid)
        invoice.balance = invoice_balance
        invoice.status = new_status.value
        note = f"Financial aid applied: {money(aid.amount)} ({date.today().isoformat()})"
        invoice.notes = f"{invoice.notes}\n{note}" if invoice.notes else note

    await db.commit()
    return ApplyAidResult(
        aid_amount=aid.amount,
        new_balance=quantize(new_balance),
        invoice_status=new_status,
        message=f"Financial aid of {money(aid.amount)} applied successfully. New balance: {money(new_balance)}",
    )

"""Sponsor lump payments and their per-student allocations."""

import uuid
from datetime import date, datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String, Text, Uuid

from app.db.session import Base


class SponsorPayment(Base):
    """unallocated_amount = amount - sum(allocations); never negative."""

    __tablename__ = "sponsor_payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_sponsor_payment_amount_positive"),
        CheckConstraint("unallocated_amount >= 0", name="chk_sponsor_payment_unallocated_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sponsor_id = Column(Uuid, ForeignKey("sponsors.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    unallocated_amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=False, default=date.today)
    payment_method = Column(String(30), nullable=True)  # BANK, CHEQUE, CASH, MOBILE
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    recorded_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class SponsorPaymentAllocation(Base):
    __tablename__ = "sponsor_payment_allocations"
    __table_args__ = (
        CheckConstraint("allocated_amount > 0", name="chk_allocation_amount_positive"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sponsor_payment_id = Column(Uuid, ForeignKey("sponsor_payments.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    student_fee_id = Column(Uuid, ForeignKey("student_fees.id", ondelete="RESTRICT"), nullable=False, index=True)
    allocated_amount = Column(Numeric(12, 2), nullable=False)
    allocation_date = Column(Date, nullable=False, default=date.today)
    allocated_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

"""Student fee: amount owed before aid for one (student, fee structure, year, term)."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String, Uuid

from app.db.session import Base


class StudentFee(Base):
    """
    total_amount is created upstream and never changed by invoicing.
    discount_amount / discount_reason / balance are rewritten when aid is applied;
    amount_paid and balance move when payments or sponsor allocations land.
    """

    __tablename__ = "student_fees"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="chk_student_fee_total_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="RESTRICT"), nullable=False)
    academic_year_id = Column(Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    term_id = Column(Uuid, ForeignKey("terms.id", ondelete="RESTRICT"), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_reason = Column(String(255), nullable=True)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

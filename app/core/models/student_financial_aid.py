"""Aid award for one student. calculated_aid_amount is rewritten on every aid computation."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Numeric, String, Text, Uuid

from app.core.enums import AidStatus
from app.db.session import Base


class StudentFinancialAid(Base):
    """
    Coverage shape is one of full | percentage | fixed_amount | specific_items.
    calculated_aid_amount has no version column: concurrent invoice runs for overlapping
    periods can overwrite each other's value (last writer wins).
    """

    __tablename__ = "student_financial_aid"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    sponsor_id = Column(Uuid, ForeignKey("sponsors.id", ondelete="RESTRICT"), nullable=False, index=True)
    financial_aid_type_id = Column(Uuid, ForeignKey("financial_aid_types.id", ondelete="RESTRICT"), nullable=False)
    academic_year_id = Column(Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    term_id = Column(Uuid, ForeignKey("terms.id", ondelete="RESTRICT"), nullable=True)  # null = whole year
    coverage_type = Column(String(20), nullable=False)
    coverage_percentage = Column(Numeric(5, 2), nullable=True)
    coverage_amount = Column(Numeric(12, 2), nullable=True)
    covered_items = Column(JSON, nullable=True)
    valid_from = Column(Date, nullable=True)
    valid_until = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default=AidStatus.pending.value)
    calculated_aid_amount = Column(Numeric(12, 2), nullable=True)
    conditions = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    approved_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    assigned_by = Column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

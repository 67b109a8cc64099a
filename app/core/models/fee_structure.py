"""Fee structures and their line items. Items are copied onto invoices at generation time."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class FeeStructure(Base):
    __tablename__ = "fee_structures"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False)
    academic_year_id = Column(Uuid, ForeignKey("academic_years.id", ondelete="RESTRICT"), nullable=False)
    term_id = Column(Uuid, ForeignKey("terms.id", ondelete="RESTRICT"), nullable=True)
    student_type = Column(String(20), nullable=True)  # internal | external
    total_amount = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    items = relationship("FeeStructureItem", back_populates="fee_structure", order_by="FeeStructureItem.display_order")


class FeeStructureItem(Base):
    __tablename__ = "fee_structure_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="CASCADE"), nullable=False)
    item_name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    display_order = Column(Integer, nullable=False, default=0)

    fee_structure = relationship("FeeStructure", back_populates="items")

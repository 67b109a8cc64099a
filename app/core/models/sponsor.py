import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Numeric, String, Text, Uuid

from app.core.enums import CoverageType
from app.db.session import Base


class Sponsor(Base):
    """Organisation or person funding financial aid awards."""

    __tablename__ = "sponsors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False, unique=True)
    contact_email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class FinancialAidType(Base):
    """Aid programme offered by a sponsor. Its coverage fields are the defaults for new awards."""

    __tablename__ = "financial_aid_types"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sponsor_id = Column(Uuid, ForeignKey("sponsors.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    coverage_type = Column(String(20), nullable=False, default=CoverageType.full.value)
    coverage_percentage = Column(Numeric(5, 2), nullable=True)
    coverage_amount = Column(Numeric(12, 2), nullable=True)
    covered_items = Column(JSON, nullable=True)  # list of fee item names
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

"""Directory rows keyed by the external identity id: profiles and the per-role records."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.core.enums import ProfileRole
from app.db.session import Base


class Profile(Base):
    """
    One row per identity; id is the identity provisioner's id, never generated here.
    email is stored lowercased so uniqueness checks are case-insensitive.
    """

    __tablename__ = "profiles"

    id = Column(Uuid, primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False)
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=False)
    role = Column(String(30), nullable=False, default=ProfileRole.student.value)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)


class Student(Base):
    """Student role record. student_id is the school's natural key (admission code)."""

    __tablename__ = "students"

    id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    student_id = Column(String(50), nullable=True, unique=True)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="SET NULL"), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(20), nullable=True)
    student_type = Column(String(20), nullable=True)  # internal | external
    guardian_email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    phone_number = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    profile = relationship("Profile", foreign_keys=[id])


class Teacher(Base):
    """Teacher role record. employee_id is the natural key."""

    __tablename__ = "teachers"

    id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    employee_id = Column(String(50), nullable=False, unique=True)
    title = Column(String(10), nullable=True)
    gender = Column(String(20), nullable=True)
    department_id = Column(Uuid, ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)
    teacher_type = Column(String(20), nullable=False, default="permanent")
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    profile = relationship("Profile", foreign_keys=[id])


class Guardian(Base):
    """Guardian role record. national_id is the natural key."""

    __tablename__ = "guardians"

    id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    national_id = Column(String(50), nullable=False, unique=True)
    title = Column(String(10), nullable=True)
    gender = Column(String(20), nullable=True)
    phone_number = Column(String(50), nullable=False)
    alternative_phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    occupation = Column(String(100), nullable=True)
    workplace = Column(String(100), nullable=True)
    work_phone = Column(String(50), nullable=True)
    preferred_contact_method = Column(String(20), nullable=True)
    is_emergency_contact = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    profile = relationship("Profile", foreign_keys=[id])

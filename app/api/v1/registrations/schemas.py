"""Registration schemas: single-record payloads, bulk rows, and batch summaries."""

from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core.enums import BulkErrorType, GuardianRelationship, ProfileRole, TeacherType


def strip_key(value: Any) -> Optional[str]:
    """Natural keys are stored and compared stripped."""
    if value is None:
        return None
    return str(value).strip()


class PersonBase(BaseModel):
    first_name: str = Field(..., min_length=1)
    middle_name: Optional[str] = None
    last_name: str = Field(..., min_length=1)
    email: EmailStr


class StudentCreate(PersonBase):
    student_id: Optional[str] = Field(None, description="School admission code (natural key)")
    class_id: UUID
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    student_type: Optional[str] = Field(None, description="internal | external")
    guardian_email: Optional[EmailStr] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None

    @field_validator("student_id", mode="before")
    @classmethod
    def strip_student_id(cls, value: Any) -> Optional[str]:
        return strip_key(value) or None


class TeacherCreate(PersonBase):
    employee_id: str = Field(..., min_length=1)
    title: Optional[str] = Field(None, description="mr, mrs, ms, dr, prof, rev")
    gender: Optional[str] = None
    department_id: Optional[UUID] = None
    role: ProfileRole = ProfileRole.teacher
    teacher_type: TeacherType = TeacherType.permanent
    subject_ids: List[UUID] = Field(default_factory=list)
    class_ids: List[UUID] = Field(default_factory=list)

    @field_validator("employee_id", mode="before")
    @classmethod
    def strip_employee_id(cls, value: Any) -> Optional[str]:
        return strip_key(value)


class GuardianStudentLink(BaseModel):
    student_id: UUID
    relationship: GuardianRelationship
    is_primary: bool = False
    is_emergency_contact: bool = False
    can_pickup: bool = False
    financial_responsibility: bool = False
    receives_report_card: bool = False
    receives_notifications: bool = False
    notes: Optional[str] = None


class GuardianCreate(PersonBase):
    national_id: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    title: Optional[str] = None
    gender: Optional[str] = None
    alternative_phone: Optional[str] = None
    address: Optional[str] = None
    occupation: Optional[str] = None
    workplace: Optional[str] = None
    work_phone: Optional[str] = None
    preferred_contact_method: Optional[str] = Field(None, description="email, phone, sms, whatsapp")
    is_emergency_contact: bool = True
    students: List[GuardianStudentLink] = Field(default_factory=list)

    @field_validator("national_id", mode="before")
    @classmethod
    def strip_national_id(cls, value: Any) -> Optional[str]:
        return strip_key(value)


class RegistrationResult(BaseModel):
    id: UUID
    warnings: List[str] = Field(default_factory=list)


class RegistrationResponse(BaseModel):
    """Single-record outcome. errors holds field-level messages; message is the general one."""

    success: bool
    message: str
    id: Optional[UUID] = None
    errors: Dict[str, List[str]] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


# ----- Bulk rows (names instead of ids; resolved through mappings) -----
class StudentBulkRow(BaseModel):
    first_name: str = Field(..., min_length=1)
    middle_name: Optional[str] = None
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    student_id: Optional[str] = None
    class_name: str = Field(..., min_length=1)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    student_type: Optional[str] = None
    guardian_email: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None

    @field_validator("student_id", mode="before")
    @classmethod
    def strip_student_id(cls, value: Any) -> Optional[str]:
        return strip_key(value) or None


class TeacherBulkRow(BaseModel):
    first_name: str = Field(..., min_length=1)
    middle_name: Optional[str] = None
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    employee_id: str = Field(..., min_length=1)
    title: Optional[str] = None
    gender: Optional[str] = None
    department: Optional[str] = None
    subjects: Optional[str] = Field(None, description="Comma-separated subject names")
    classes: Optional[str] = Field(None, description="Comma-separated class names")
    role: ProfileRole = ProfileRole.teacher
    teacher_type: TeacherType = TeacherType.permanent

    @field_validator("employee_id", mode="before")
    @classmethod
    def strip_employee_id(cls, value: Any) -> Optional[str]:
        return strip_key(value)


class GuardianBulkRow(BaseModel):
    first_name: str = Field(..., min_length=1)
    middle_name: Optional[str] = None
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    national_id: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    students: str = Field(..., description="Comma-separated student codes")
    relationship: GuardianRelationship = GuardianRelationship.legal_guardian
    title: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    occupation: Optional[str] = None

    @field_validator("national_id", mode="before")
    @classmethod
    def strip_national_id(cls, value: Any) -> Optional[str]:
        return strip_key(value)


class TeacherMappings(BaseModel):
    departments: Dict[str, UUID] = Field(default_factory=dict)
    subjects: Dict[str, UUID] = Field(default_factory=dict)
    classes: Dict[str, UUID] = Field(default_factory=dict)


class StudentBulkRequest(BaseModel):
    rows: List[Dict[str, Any]] = Field(..., min_length=1, description="StudentBulkRow-shaped dicts, validated per row")
    class_mapping: Optional[Dict[str, UUID]] = None


class TeacherBulkRequest(BaseModel):
    rows: List[Dict[str, Any]] = Field(..., min_length=1, description="TeacherBulkRow-shaped dicts, validated per row")
    mappings: Optional[TeacherMappings] = None


class GuardianBulkRequest(BaseModel):
    rows: List[Dict[str, Any]] = Field(..., min_length=1, description="GuardianBulkRow-shaped dicts, validated per row")
    student_mapping: Optional[Dict[str, UUID]] = None


class BulkUploadError(BaseModel):
    row: int
    email: Optional[str] = None
    natural_key: Optional[str] = None
    error: str
    type: BulkErrorType


class BulkUploadResult(BaseModel):
    success: bool
    total_processed: int
    success_count: int
    failure_count: int
    skipped_count: int
    errors: List[BulkUploadError] = Field(default_factory=list)
    warnings: List[BulkUploadError] = Field(default_factory=list)
    message: str

"""
Bulk registration: wraps the single-record saga for N rows.

Existing emails and natural keys are fetched once for the whole upload. Rows are processed in
fixed-size batches; every row is independent, so one failure is recorded against its row number
and processing moves on. Only environment problems (missing credentials, the prescan failing)
produce a top-level failed summary.
"""

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from openpyxl import load_workbook
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from app.auth.identity import IdentityProvider
from app.core.config import settings
from app.core.enums import BulkErrorType
from app.core.exceptions import IdentityError, ServiceError, ValidationError
from app.core.models import Guardian, Student, Teacher

from . import directory
from .schemas import (
    BulkUploadError,
    BulkUploadResult,
    GuardianBulkRow,
    GuardianCreate,
    GuardianStudentLink,
    StudentBulkRow,
    StudentCreate,
    TeacherBulkRow,
    TeacherCreate,
    TeacherMappings,
)
from .service import register_guardian, register_student, register_teacher

logger = logging.getLogger(__name__)

HEADER_ROW_OFFSET = 2  # 1-indexed rows plus the header row
CONFIG_ERROR_MESSAGE = "Server configuration error. Please contact support."

RowHandler = Callable[[Dict[str, Any]], Awaitable[List[str]]]


@dataclass
class BatchContext:
    """Emails and natural keys seen so far in this run. Grows after every successful row."""

    existing_emails: Set[str]
    existing_keys: Set[str]
    key_label: str

    def duplicate_reason(self, email: str, key: Optional[str]) -> Optional[str]:
        if email in self.existing_emails:
            return "Email already exists in the system"
        if key and key in self.existing_keys:
            return f'{self.key_label} "{key}" already exists in the system'
        return None

    def remember(self, email: str, key: Optional[str]) -> None:
        self.existing_emails.add(email)
        if key:
            self.existing_keys.add(key)


@dataclass
class BatchTally:
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    errors: List[BulkUploadError] = field(default_factory=list)
    warnings: List[BulkUploadError] = field(default_factory=list)


def _clean(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _split_names(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _error_type(exc: ServiceError) -> BulkErrorType:
    if isinstance(exc, IdentityError) and exc.conflict:
        return BulkErrorType.duplicate
    try:
        return BulkErrorType(exc.error_type)
    except ValueError:
        return BulkErrorType.database


def _validation_message(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def summary_message(entity: str, total: int, success: int, failed: int, skipped: int) -> str:
    if total and success == total:
        return f"Successfully registered all {success} {entity}!"
    if success > 0:
        return f"Registered {success} out of {total} {entity}. {failed} failed, {skipped} skipped."
    return f"Failed to register any {entity}. {failed} failed, {skipped} skipped."


def failed_summary(message: str, error: Optional[str] = None) -> BulkUploadResult:
    errors = [BulkUploadError(row=0, error=error, type=BulkErrorType.database)] if error else []
    return BulkUploadResult(
        success=False,
        total_processed=0,
        success_count=0,
        failure_count=0,
        skipped_count=0,
        errors=errors,
        message=message,
    )


async def prescan(
    db: AsyncSession,
    rows: List[Dict[str, Any]],
    key_field: str,
    key_column: InstrumentedAttribute,
    key_label: str,
) -> BatchContext:
    """One query for all emails and one for all natural keys in the upload."""
    emails = [_clean(r.get("email")).lower() for r in rows]
    keys = [_clean(r.get(key_field)) for r in rows]
    return BatchContext(
        existing_emails=await directory.find_existing_emails(db, emails),
        existing_keys=await directory.find_existing_keys(db, key_column, keys),
        key_label=key_label,
    )


async def run_batches(
    rows: List[Dict[str, Any]],
    ctx: BatchContext,
    handler: RowHandler,
    *,
    entity: str,
    key_field: str,
    batch_size: int,
) -> BulkUploadResult:
    tally = BatchTally()
    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        for offset, raw in enumerate(batch):
            row_number = raw.get("row_number") or start + offset + HEADER_ROW_OFFSET
            email = _clean(raw.get("email")).lower()
            key = _clean(raw.get(key_field)) or None

            def record(message: str, error_type: BulkErrorType) -> BulkUploadError:
                return BulkUploadError(
                    row=row_number, email=email or None, natural_key=key, error=message, type=error_type
                )

            reason = ctx.duplicate_reason(email, key)
            if reason:
                tally.skipped_count += 1
                tally.errors.append(record(reason, BulkErrorType.duplicate))
                continue

            try:
                warnings = await handler(raw)
            except PydanticValidationError as e:
                tally.failure_count += 1
                tally.errors.append(record(_validation_message(e), BulkErrorType.validation))
            except ServiceError as e:
                tally.failure_count += 1
                tally.errors.append(record(e.message, _error_type(e)))
            except Exception as e:
                logger.exception("Unexpected error registering %s row %s", entity, row_number)
                tally.failure_count += 1
                tally.errors.append(record(f"Unexpected error: {e}", BulkErrorType.database))
            else:
                tally.success_count += 1
                ctx.remember(email, key)
                tally.warnings.extend(record(w, BulkErrorType.database) for w in warnings)

    total = len(rows)
    message = summary_message(entity, total, tally.success_count, tally.failure_count, tally.skipped_count)
    logger.info("Bulk %s registration: %s", entity, message)
    return BulkUploadResult(
        success=tally.success_count > 0,
        total_processed=tally.success_count + tally.failure_count + tally.skipped_count,
        success_count=tally.success_count,
        failure_count=tally.failure_count,
        skipped_count=tally.skipped_count,
        errors=tally.errors,
        warnings=tally.warnings,
        message=message,
    )


# ----- Students -----
async def bulk_register_students(
    db: AsyncSession,
    provider: Optional[IdentityProvider],
    rows: List[Dict[str, Any]],
    class_mapping: Optional[Dict[str, Any]] = None,
) -> BulkUploadResult:
    if provider is None:
        return failed_summary(CONFIG_ERROR_MESSAGE)
    try:
        ctx = await prescan(db, rows, "student_id", Student.student_id, "Student ID")
        if class_mapping is None:
            class_mapping = await directory.get_class_mapping(db)
        active_year = await directory.get_active_academic_year(db)
        active_year_id = active_year.id if active_year else None
    except SQLAlchemyError as e:
        logger.exception("Bulk student prescan failed")
        return failed_summary("Failed to check for existing records.", f"Database error: {e}")
    if active_year_id is None:
        logger.warning("No active academic year found. Students will be registered but not enrolled.")

    async def handle(raw: Dict[str, Any]) -> List[str]:
        row = StudentBulkRow.model_validate(raw)
        class_id = class_mapping.get(row.class_name.strip())
        if not class_id:
            raise ValidationError(f'Class "{row.class_name}" not found in the system')
        payload = StudentCreate(
            first_name=row.first_name,
            middle_name=row.middle_name,
            last_name=row.last_name,
            email=row.email.strip().lower(),
            student_id=row.student_id,
            class_id=class_id,
            date_of_birth=row.date_of_birth,
            gender=row.gender,
            student_type=row.student_type,
            guardian_email=row.guardian_email or None,
            address=row.address,
            phone_number=row.phone_number,
        )
        result = await register_student(
            db,
            provider,
            payload,
            check_duplicates_first=False,
            academic_year_id=active_year_id,
            enroll=active_year_id is not None,
        )
        return result.warnings

    return await run_batches(
        rows, ctx, handle, entity="students", key_field="student_id", batch_size=settings.student_batch_size
    )


# ----- Teachers -----
async def get_teacher_mappings(db: AsyncSession) -> TeacherMappings:
    return TeacherMappings(
        departments=await directory.get_department_mapping(db),
        subjects=await directory.get_subject_mapping(db),
        classes=await directory.get_class_mapping(db),
    )


def _resolve(names: List[str], mapping: Dict[str, Any], label: str) -> List[Any]:
    missing = [n for n in names if n not in mapping]
    if missing:
        raise ValidationError(f"{label} not found: {', '.join(missing)}")
    return [mapping[n] for n in names]


async def bulk_register_teachers(
    db: AsyncSession,
    provider: Optional[IdentityProvider],
    rows: List[Dict[str, Any]],
    mappings: Optional[TeacherMappings] = None,
) -> BulkUploadResult:
    if provider is None:
        return failed_summary(CONFIG_ERROR_MESSAGE)
    try:
        ctx = await prescan(db, rows, "employee_id", Teacher.employee_id, "Employee ID")
        if mappings is None:
            mappings = await get_teacher_mappings(db)
    except SQLAlchemyError as e:
        logger.exception("Bulk teacher prescan failed")
        return failed_summary("Failed to check for existing records.", f"Database error: {e}")

    async def handle(raw: Dict[str, Any]) -> List[str]:
        row = TeacherBulkRow.model_validate(raw)
        department_id = None
        if row.department and row.department.strip():
            department_id = mappings.departments.get(row.department.strip())
            if not department_id:
                raise ValidationError(f'Department "{row.department}" not found in the system')
        payload = TeacherCreate(
            first_name=row.first_name,
            middle_name=row.middle_name,
            last_name=row.last_name,
            email=row.email.strip().lower(),
            employee_id=row.employee_id,
            title=row.title,
            gender=row.gender,
            department_id=department_id,
            role=row.role,
            teacher_type=row.teacher_type,
            subject_ids=_resolve(_split_names(row.subjects), mappings.subjects, "Subjects"),
            class_ids=_resolve(_split_names(row.classes), mappings.classes, "Classes"),
        )
        await register_teacher(db, provider, payload, check_duplicates_first=False)
        return []

    return await run_batches(
        rows, ctx, handle, entity="teachers", key_field="employee_id", batch_size=settings.teacher_batch_size
    )


# ----- Guardians -----
async def bulk_register_guardians(
    db: AsyncSession,
    provider: Optional[IdentityProvider],
    rows: List[Dict[str, Any]],
    student_mapping: Optional[Dict[str, Any]] = None,
) -> BulkUploadResult:
    if provider is None:
        return failed_summary(CONFIG_ERROR_MESSAGE)
    try:
        ctx = await prescan(db, rows, "national_id", Guardian.national_id, "National ID")
        if student_mapping is None:
            codes = sorted({c for r in rows for c in _split_names(_clean(r.get("students")))})
            student_mapping = await directory.get_student_code_mapping(db, codes)
    except SQLAlchemyError as e:
        logger.exception("Bulk guardian prescan failed")
        return failed_summary("Failed to check for existing records.", f"Database error: {e}")

    async def handle(raw: Dict[str, Any]) -> List[str]:
        row = GuardianBulkRow.model_validate(raw)
        student_ids = _resolve(_split_names(row.students), student_mapping, "Students")
        payload = GuardianCreate(
            first_name=row.first_name,
            middle_name=row.middle_name,
            last_name=row.last_name,
            email=row.email.strip().lower(),
            national_id=row.national_id,
            phone_number=row.phone_number,
            title=row.title,
            gender=row.gender,
            address=row.address,
            occupation=row.occupation,
            students=[
                GuardianStudentLink(student_id=sid, relationship=row.relationship, is_primary=(i == 0))
                for i, sid in enumerate(student_ids)
            ],
        )
        await register_guardian(db, provider, payload, check_duplicates_first=False)
        return []

    return await run_batches(
        rows, ctx, handle, entity="guardians", key_field="national_id", batch_size=settings.guardian_batch_size
    )


# ----- Spreadsheet upload -----
def _header(value: Any) -> str:
    text = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", _clean(value))
    return text.lower().replace(" ", "_")


def _cell(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return value


def parse_bulk_upload(content: bytes, filename: Optional[str]) -> List[Dict[str, Any]]:
    """
    Read the first sheet of an .xlsx upload into row dicts. First row = headers; headers are
    normalised to snake_case (firstName / First Name -> first_name). Blank rows are skipped;
    each row keeps its spreadsheet line in row_number so errors point at the right line.
    """
    if not filename or not filename.lower().endswith(".xlsx"):
        raise ValidationError("File must be an Excel file (.xlsx)")
    if not content:
        raise ValidationError("File is empty")
    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ValidationError(f"Invalid Excel file: {e}") from e

    ws = wb.active
    rows_iter = ws.iter_rows(values_only=True)
    header_row = next(rows_iter, None)
    if not header_row or not any(header_row):
        raise ValidationError("Excel file has no header row")
    headers = [_header(h) for h in header_row]

    rows: List[Dict[str, Any]] = []
    for line, values in enumerate(rows_iter, start=HEADER_ROW_OFFSET):
        if not values or all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
            continue
        row: Dict[str, Any] = {"row_number": line}
        for name, value in zip(headers, values):
            if name and value is not None:
                row[name] = _cell(value)
        rows.append(row)
    wb.close()
    return rows

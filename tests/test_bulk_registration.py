import io
from datetime import date, datetime
from typing import Any, Dict

import pytest
from openpyxl import Workbook
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.registrations import bulk_service, directory
from app.api.v1.registrations.bulk_service import parse_bulk_upload, summary_message
from app.core.exceptions import ValidationError
from app.core.models import Enrollment, Guardian, Student, StudentGuardian, Teacher

from .conftest import FakeIdentityProvider, make_student


def _row(n: int, **overrides) -> Dict[str, Any]:
    row = {
        "first_name": f"Student{n}",
        "last_name": "Test",
        "email": f"student{n}@school.example.com",
        "student_id": f"STU{n:03d}",
        "class_name": "Form 1",
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_bulk_students_mixed_rows(
    db_session: AsyncSession, identity_provider: FakeIdentityProvider, school: Dict[str, Any]
) -> None:
    rows = [_row(1), _row(2, class_name="Form 2"), _row(3, email="not-an-email")]

    result = await bulk_service.bulk_register_students(db_session, identity_provider, rows)

    assert result.success is True
    assert (result.success_count, result.failure_count, result.skipped_count) == (2, 1, 0)
    assert result.total_processed == 3
    assert len(result.errors) == 1
    assert result.errors[0].row == 4
    assert result.errors[0].type == "validation"
    assert result.message == "Registered 2 out of 3 students. 1 failed, 0 skipped."
    assert (await db_session.execute(select(func.count()).select_from(Enrollment))).scalar_one() == 2


@pytest.mark.asyncio
async def test_bulk_students_row_numbers_start_after_header(
    db_session: AsyncSession, identity_provider: FakeIdentityProvider, school: Dict[str, Any]
) -> None:
    rows = [_row(1, class_name="Form 9")]

    result = await bulk_service.bulk_register_students(db_session, identity_provider, rows)

    assert result.success is False
    assert result.errors[0].row == 2
    assert result.errors[0].error == 'Class "Form 9" not found in the system'
    assert result.message == "Failed to register any students. 1 failed, 0 skipped."


@pytest.mark.asyncio
async def test_bulk_students_skip_duplicates_in_upload_and_database(
    db_session: AsyncSession, identity_provider: FakeIdentityProvider, school: Dict[str, Any]
) -> None:
    await make_student(db_session, school["classes"]["Form 1"], code="STU050")
    rows = [
        _row(1),
        _row(2, email="STUDENT1@school.example.com"),
        _row(3, student_id="STU050"),
    ]

    result = await bulk_service.bulk_register_students(db_session, identity_provider, rows)

    assert (result.success_count, result.failure_count, result.skipped_count) == (1, 0, 2)
    assert [e.type for e in result.errors] == ["duplicate", "duplicate"]
    assert result.errors[0].error == "Email already exists in the system"
    assert result.errors[1].error == 'Student ID "STU050" already exists in the system'
    assert identity_provider.create_calls == 1


@pytest.mark.asyncio
async def test_bulk_identity_conflict_counts_as_duplicate_failure(
    db_session: AsyncSession, identity_provider: FakeIdentityProvider, school: Dict[str, Any]
) -> None:
    await identity_provider.create_identity("student1@school.example.com", "pw", {})

    result = await bulk_service.bulk_register_students(db_session, identity_provider, [_row(1)])

    assert result.failure_count == 1
    assert result.errors[0].type == "duplicate"


@pytest.mark.asyncio
async def test_bulk_without_provider_returns_failed_summary(
    db_session: AsyncSession, school: Dict[str, Any]
) -> None:
    result = await bulk_service.bulk_register_students(db_session, None, [_row(1)])

    assert result.success is False
    assert result.total_processed == 0
    assert result.message == "Server configuration error. Please contact support."
    assert (await db_session.execute(select(func.count()).select_from(Student))).scalar_one() == 0


@pytest.mark.asyncio
async def test_bulk_teachers_resolve_names(
    db_session: AsyncSession, identity_provider: FakeIdentityProvider, school: Dict[str, Any]
) -> None:
    rows = [
        {
            "first_name": "Grace",
            "last_name": "Phiri",
            "email": "grace@school.example.com",
            "employee_id": "EMP001",
            "department": "Science",
            "subjects": "Mathematics, Physics",
            "classes": "Form 1",
        },
        {
            "first_name": "Peter",
            "last_name": "Chirwa",
            "email": "peter@school.example.com",
            "employee_id": "EMP002",
            "subjects": "Mathematics, Chemistry, Biology",
            "classes": "Form 1",
        },
    ]

    result = await bulk_service.bulk_register_teachers(db_session, identity_provider, rows)

    assert result.success_count == 1
    assert result.errors[0].row == 3
    assert result.errors[0].error == "Subjects not found: Chemistry, Biology"
    assert result.errors[0].natural_key == "EMP002"
    teacher = (await db_session.execute(select(Teacher))).scalar_one()
    assert teacher.department_id == school["department"].id


@pytest.mark.asyncio
async def test_bulk_guardians_link_by_student_code(
    db_session: AsyncSession, identity_provider: FakeIdentityProvider, school: Dict[str, Any]
) -> None:
    first = await make_student(db_session, school["classes"]["Form 1"], code="STU100")
    await make_student(db_session, school["classes"]["Form 2"], code="STU101")
    rows = [
        {
            "first_name": "Joseph",
            "last_name": "Mwale",
            "email": "joseph@school.example.com",
            "national_id": "NID-1",
            "phone_number": "0991000000",
            "students": "STU100, STU101",
            "relationship": "father",
        },
        {
            "first_name": "Ruth",
            "last_name": "Mwale",
            "email": "ruth@school.example.com",
            "national_id": "NID-2",
            "phone_number": "0991000001",
            "students": "STU999",
        },
    ]

    result = await bulk_service.bulk_register_guardians(db_session, identity_provider, rows)

    assert result.success_count == 1
    assert result.errors[0].error == "Students not found: STU999"
    guardian = (await db_session.execute(select(Guardian))).scalar_one()
    assert guardian.national_id == "NID-1"
    links = (await db_session.execute(select(StudentGuardian).order_by(StudentGuardian.is_primary.desc()))).scalars().all()
    assert len(links) == 2
    assert links[0].student_id == first.id
    assert links[0].is_primary is True
    assert links[1].is_primary is False


def test_summary_messages() -> None:
    assert summary_message("students", 3, 3, 0, 0) == "Successfully registered all 3 students!"
    assert summary_message("teachers", 5, 2, 1, 2) == "Registered 2 out of 5 teachers. 1 failed, 2 skipped."
    assert summary_message("guardians", 2, 0, 2, 0) == "Failed to register any guardians. 2 failed, 0 skipped."


def _workbook_bytes(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_parse_bulk_upload_normalises_headers_and_cells() -> None:
    content = _workbook_bytes(
        [
            ["firstName", "Last Name", "email", "student_id", "Class Name", "dateOfBirth"],
            ["  Amina ", "Banda", "amina@school.example.com", 1001, "Form 1", datetime(2010, 5, 4)],
            [None, None, None, None, None, None],
            ["Chifundo", "Phiri", "chifundo@school.example.com", "STU002", "Form 2", None],
        ]
    )

    rows = parse_bulk_upload(content, "students.xlsx")

    assert len(rows) == 2
    assert rows[0] == {
        "row_number": 2,
        "first_name": "Amina",
        "last_name": "Banda",
        "email": "amina@school.example.com",
        "student_id": "1001",
        "class_name": "Form 1",
        "date_of_birth": date(2010, 5, 4),
    }
    assert "date_of_birth" not in rows[1]
    assert rows[1]["row_number"] == 4


def test_parse_bulk_upload_rejects_non_excel() -> None:
    with pytest.raises(ValidationError):
        parse_bulk_upload(b"a,b\n1,2", "students.csv")
    with pytest.raises(ValidationError):
        parse_bulk_upload(b"not a zip", "students.xlsx")


@pytest.mark.asyncio
async def test_bulk_student_codes_are_stripped(
    db_session: AsyncSession, identity_provider: FakeIdentityProvider, school: Dict[str, Any]
) -> None:
    first = await bulk_service.bulk_register_students(
        db_session, identity_provider, [_row(9, student_id=" STU009 ")]
    )
    assert first.success_count == 1
    student = (await db_session.execute(select(Student))).scalar_one()
    assert student.student_id == "STU009"

    again = await bulk_service.bulk_register_students(
        db_session, identity_provider, [_row(10, student_id="STU009")]
    )

    assert (again.success_count, again.skipped_count) == (0, 1)
    assert again.errors[0].error == 'Student ID "STU009" already exists in the system'
    assert (await db_session.execute(select(func.count()).select_from(Student))).scalar_one() == 1


@pytest.mark.asyncio
async def test_bulk_prescan_failure_returns_failed_summary(
    db_session: AsyncSession,
    identity_provider: FakeIdentityProvider,
    school: Dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def broken_lookup(db, emails):
        raise OperationalError("SELECT email FROM profiles", {}, Exception("connection reset"))

    monkeypatch.setattr(directory, "find_existing_emails", broken_lookup)

    result = await bulk_service.bulk_register_students(db_session, identity_provider, [_row(1), _row(2)])

    assert result.success is False
    assert result.total_processed == 0
    assert result.message == "Failed to check for existing records."
    assert result.errors[0].row == 0
    assert result.errors[0].type == "database"
    assert result.errors[0].error.startswith("Database error:")
    assert identity_provider.create_calls == 0


@pytest.mark.asyncio
async def test_bulk_errors_keep_spreadsheet_line_after_blank_rows(
    db_session: AsyncSession, identity_provider: FakeIdentityProvider, school: Dict[str, Any]
) -> None:
    content = _workbook_bytes(
        [
            ["first_name", "last_name", "email", "student_id", "class_name"],
            ["Amina", "Banda", "amina@school.example.com", "STU201", "Form 1"],
            [None, None, None, None, None],
            ["Chifundo", "Phiri", "chifundo@school.example.com", "STU202", "Form 9"],
        ]
    )
    rows = parse_bulk_upload(content, "students.xlsx")

    result = await bulk_service.bulk_register_students(db_session, identity_provider, rows)

    assert result.success_count == 1
    assert result.errors[0].row == 4
    assert result.errors[0].error == 'Class "Form 9" not found in the system'

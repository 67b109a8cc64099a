"""
Directory store writes used by the registration saga.

Each write commits on its own so that a later failing step leaves earlier rows in place for
the saga to compensate. On a database error the session is rolled back before re-raising.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Set, Type
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from app.core.models import AcademicYear, Department, Enrollment, Profile, SchoolClass, Student, Subject
from app.db.session import Base


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


async def find_existing_emails(db: AsyncSession, emails: Iterable[str]) -> Set[str]:
    """Lowercased emails that already have a profile. One query for the whole set."""
    wanted = {e.strip().lower() for e in emails if e and e.strip()}
    if not wanted:
        return set()
    result = await db.execute(select(Profile.email).where(func.lower(Profile.email).in_(wanted)))
    return {e.lower() for e in result.scalars().all()}


async def find_existing_keys(
    db: AsyncSession,
    column: InstrumentedAttribute,
    keys: Iterable[Optional[str]],
) -> Set[str]:
    """Natural keys (student_id / employee_id / national_id) already present in `column`."""
    wanted = {k.strip() for k in keys if k and k.strip()}
    if not wanted:
        return set()
    result = await db.execute(select(column).where(column.in_(wanted)))
    return set(result.scalars().all())


async def upsert_profile(
    db: AsyncSession,
    identity_id: UUID,
    email: str,
    first_name: str,
    middle_name: Optional[str],
    last_name: str,
    role: str,
) -> Profile:
    """Insert the profile, or update it when a row for this identity id already exists."""
    try:
        profile = await db.merge(
            Profile(
                id=identity_id,
                email=email,
                first_name=first_name,
                middle_name=middle_name or None,
                last_name=last_name,
                role=role,
            )
        )
    except SQLAlchemyError:
        await db.rollback()
        raise
    await _commit(db)
    return profile


async def insert_rows(db: AsyncSession, rows: Sequence[Base]) -> None:
    if not rows:
        return
    db.add_all(rows)
    await _commit(db)


async def insert_role_record(db: AsyncSession, record: Base) -> None:
    await insert_rows(db, [record])


async def insert_links(db: AsyncSession, links: Sequence[Base]) -> None:
    await insert_rows(db, links)


async def delete_rows(db: AsyncSession, model: Type[Base], column: InstrumentedAttribute, value: UUID) -> None:
    try:
        await db.execute(delete(model).where(column == value))
    except SQLAlchemyError:
        await db.rollback()
        raise
    await _commit(db)


async def delete_profile(db: AsyncSession, identity_id: UUID) -> None:
    await delete_rows(db, Profile, Profile.id, identity_id)


async def get_active_academic_year(db: AsyncSession) -> Optional[AcademicYear]:
    result = await db.execute(
        select(AcademicYear).where(AcademicYear.is_active.is_(True)).order_by(AcademicYear.start_date.desc())
    )
    return result.scalars().first()


async def enroll_student(db: AsyncSession, student_id: UUID, class_id: UUID, academic_year_id: UUID) -> Enrollment:
    enrollment = Enrollment(
        student_id=student_id,
        class_id=class_id,
        academic_year_id=academic_year_id,
        status="active",
    )
    db.add(enrollment)
    await _commit(db)
    return enrollment


# ----- Name -> id mappings for bulk uploads -----
async def get_class_mapping(db: AsyncSession) -> Dict[str, UUID]:
    result = await db.execute(select(SchoolClass.name, SchoolClass.id).where(SchoolClass.is_active.is_(True)))
    return {name: cid for name, cid in result.all()}


async def get_department_mapping(db: AsyncSession) -> Dict[str, UUID]:
    result = await db.execute(select(Department.name, Department.id).where(Department.is_active.is_(True)))
    return {name: did for name, did in result.all()}


async def get_subject_mapping(db: AsyncSession) -> Dict[str, UUID]:
    result = await db.execute(select(Subject.name, Subject.id).where(Subject.is_active.is_(True)))
    return {name: sid for name, sid in result.all()}


async def get_student_code_mapping(db: AsyncSession, codes: Optional[List[str]] = None) -> Dict[str, UUID]:
    stmt = select(Student.student_id, Student.id).where(Student.student_id.is_not(None))
    if codes is not None:
        stmt = stmt.where(Student.student_id.in_(codes))
    result = await db.execute(stmt)
    return {code: sid for code, sid in result.all()}

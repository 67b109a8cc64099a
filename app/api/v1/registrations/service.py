"""Single-record registration: one saga per person across the identity provider and the directory."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from app.auth.identity import IdentityProvider
from app.core.config import settings
from app.core.enums import ProfileRole
from app.core.exceptions import ConfigurationError, DuplicateError, IdentityError, ValidationError
from app.core.models import Guardian, Student, StudentGuardian, Teacher, TeacherClass, TeacherSubject
from app.core.saga import Saga
from app.db.session import Base

from . import directory
from .schemas import GuardianCreate, PersonBase, RegistrationResult, StudentCreate, TeacherCreate

logger = logging.getLogger(__name__)

TEACHING_ROLES = (ProfileRole.teacher, ProfileRole.headteacher, ProfileRole.deputy_headteacher)


@dataclass
class NaturalKey:
    column: InstrumentedAttribute
    value: Optional[str]
    field: str
    label: str


@dataclass
class RegistrationPlan:
    """Everything the saga needs for one person, independent of the role."""

    person: PersonBase
    role: ProfileRole
    natural_key: NaturalKey
    role_model: Type[Base]
    build_role_record: Callable[[UUID], Base]
    build_links: Callable[[UUID], List[Base]] = lambda _id: []
    link_columns: List[InstrumentedAttribute] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


def _require_provider(provider: Optional[IdentityProvider]) -> IdentityProvider:
    if provider is None:
        raise ConfigurationError("Server configuration error. Please contact support.")
    return provider


async def check_duplicates(db: AsyncSession, email: str, key: NaturalKey) -> None:
    """Raise DuplicateError when the email or the natural key is already taken."""
    errors: Dict[str, List[str]] = {}
    if await directory.find_existing_emails(db, [email]):
        errors["email"] = ["A user with this email already exists"]
    if key.value and await directory.find_existing_keys(db, key.column, [key.value]):
        errors[key.field] = [f"{key.label} already exists"]
    if errors:
        raise DuplicateError(next(iter(errors.values()))[0], field_errors=errors)


def build_saga(db: AsyncSession, provider: IdentityProvider, plan: RegistrationPlan) -> Saga:
    person = plan.person
    email = str(person.email).strip().lower()
    metadata = {
        "first_name": person.first_name,
        "last_name": person.last_name,
        "role": plan.role.value,
        **plan.metadata,
        "must_change_password": True,
    }

    async def create_identity(ctx):
        return await provider.create_identity(email, settings.default_temporary_password, metadata)

    async def delete_identity(ctx):
        await provider.delete_identity(ctx["create_identity"].id)

    async def upsert_profile(ctx):
        return await directory.upsert_profile(
            db,
            ctx["create_identity"].id,
            email,
            person.first_name,
            person.middle_name,
            person.last_name,
            plan.role.value,
        )

    async def delete_profile(ctx):
        await directory.delete_profile(db, ctx["create_identity"].id)

    async def create_role_record(ctx):
        await directory.insert_role_record(db, plan.build_role_record(ctx["create_identity"].id))

    async def delete_role_record(ctx):
        await directory.delete_rows(db, plan.role_model, plan.role_model.id, ctx["create_identity"].id)

    async def create_relationships(ctx):
        await directory.insert_links(db, plan.build_links(ctx["create_identity"].id))

    async def delete_relationships(ctx):
        for column in plan.link_columns:
            await directory.delete_rows(db, column.class_, column, ctx["create_identity"].id)

    return (
        Saga(f"register_{plan.role.value}")
        .step(
            "create_identity",
            create_identity,
            delete_identity,
            error_class=IdentityError,
            error_message="Failed to create user account",
        )
        .step("upsert_profile", upsert_profile, delete_profile, error_message="Failed to create profile")
        .step(
            "create_role_record",
            create_role_record,
            delete_role_record,
            error_message=f"Failed to create {plan.role_model.__tablename__[:-1]} record",
        )
        .step("create_relationships", create_relationships, delete_relationships)
    )


async def register_person(
    db: AsyncSession,
    provider: Optional[IdentityProvider],
    plan: RegistrationPlan,
    *,
    check_duplicates_first: bool = True,
) -> UUID:
    provider = _require_provider(provider)
    if check_duplicates_first:
        await check_duplicates(db, str(plan.person.email).strip().lower(), plan.natural_key)
    ctx = await build_saga(db, provider, plan).run()
    identity_id = ctx["create_identity"].id
    logger.info("Registered %s %s (%s)", plan.role.value, identity_id, plan.person.email)
    return identity_id


# ----- Students -----
def student_plan(payload: StudentCreate) -> RegistrationPlan:
    def build(identity_id: UUID) -> Student:
        return Student(
            id=identity_id,
            student_id=payload.student_id or None,
            class_id=payload.class_id,
            date_of_birth=payload.date_of_birth,
            gender=payload.gender,
            student_type=payload.student_type,
            guardian_email=str(payload.guardian_email).lower() if payload.guardian_email else None,
            address=payload.address,
            phone_number=payload.phone_number,
        )

    return RegistrationPlan(
        person=payload,
        role=ProfileRole.student,
        natural_key=NaturalKey(Student.student_id, payload.student_id, "student_id", "Student ID"),
        role_model=Student,
        build_role_record=build,
        metadata={"student_id": payload.student_id},
    )


async def enroll_in_active_year(
    db: AsyncSession,
    student_id: UUID,
    class_id: UUID,
    academic_year_id: Optional[UUID] = None,
) -> Optional[str]:
    """Enrol into the given (or active) academic year. Returns a warning instead of raising."""
    try:
        if academic_year_id is None:
            year = await directory.get_active_academic_year(db)
            if year is None:
                return None
            academic_year_id = year.id
        await directory.enroll_student(db, student_id, class_id, academic_year_id)
    except SQLAlchemyError as e:
        logger.warning("Enrollment failed for student %s: %s", student_id, e)
        return f"Student registered but enrollment failed: {e}"
    return None


async def register_student(
    db: AsyncSession,
    provider: Optional[IdentityProvider],
    payload: StudentCreate,
    *,
    check_duplicates_first: bool = True,
    academic_year_id: Optional[UUID] = None,
    enroll: bool = True,
) -> RegistrationResult:
    identity_id = await register_person(
        db, provider, student_plan(payload), check_duplicates_first=check_duplicates_first
    )
    warning = None
    if enroll:
        warning = await enroll_in_active_year(db, identity_id, payload.class_id, academic_year_id)
    return RegistrationResult(id=identity_id, warnings=[warning] if warning else [])


# ----- Teachers -----
def teacher_plan(payload: TeacherCreate) -> RegistrationPlan:
    errors: Dict[str, List[str]] = {}
    if payload.role not in TEACHING_ROLES:
        errors["role"] = ["Role must be teacher, headteacher or deputy_headteacher"]
    if not payload.subject_ids:
        errors["subject_ids"] = ["At least one subject is required"]
    if not payload.class_ids:
        errors["class_ids"] = ["At least one class is required"]
    if errors:
        raise ValidationError(next(iter(errors.values()))[0], field_errors=errors)

    def build(identity_id: UUID) -> Teacher:
        return Teacher(
            id=identity_id,
            employee_id=payload.employee_id,
            title=payload.title,
            gender=payload.gender,
            department_id=payload.department_id,
            teacher_type=payload.teacher_type.value,
            status="active",
        )

    def links(identity_id: UUID) -> List[Base]:
        rows: List[Base] = [TeacherSubject(teacher_id=identity_id, subject_id=s) for s in dict.fromkeys(payload.subject_ids)]
        rows += [TeacherClass(teacher_id=identity_id, class_id=c) for c in dict.fromkeys(payload.class_ids)]
        return rows

    return RegistrationPlan(
        person=payload,
        role=payload.role,
        natural_key=NaturalKey(Teacher.employee_id, payload.employee_id, "employee_id", "Employee ID"),
        role_model=Teacher,
        build_role_record=build,
        build_links=links,
        link_columns=[TeacherSubject.teacher_id, TeacherClass.teacher_id],
        metadata={"employee_id": payload.employee_id},
    )


async def register_teacher(
    db: AsyncSession,
    provider: Optional[IdentityProvider],
    payload: TeacherCreate,
    *,
    check_duplicates_first: bool = True,
) -> RegistrationResult:
    plan = teacher_plan(payload)
    identity_id = await register_person(db, provider, plan, check_duplicates_first=check_duplicates_first)
    return RegistrationResult(id=identity_id)


# ----- Guardians -----
def guardian_plan(payload: GuardianCreate) -> RegistrationPlan:
    if not payload.students:
        raise ValidationError(
            "At least one student must be linked to the guardian",
            field_errors={"students": ["At least one student must be linked"]},
        )

    def build(identity_id: UUID) -> Guardian:
        return Guardian(
            id=identity_id,
            national_id=payload.national_id,
            title=payload.title,
            gender=payload.gender,
            phone_number=payload.phone_number,
            alternative_phone=payload.alternative_phone,
            address=payload.address,
            occupation=payload.occupation,
            workplace=payload.workplace,
            work_phone=payload.work_phone,
            preferred_contact_method=payload.preferred_contact_method,
            is_emergency_contact=payload.is_emergency_contact,
        )

    def links(identity_id: UUID) -> List[Base]:
        return [
            StudentGuardian(
                guardian_id=identity_id,
                student_id=link.student_id,
                relationship=link.relationship.value,
                is_primary=link.is_primary,
                is_emergency_contact=link.is_emergency_contact,
                can_pickup=link.can_pickup,
                financial_responsibility=link.financial_responsibility,
                receives_report_card=link.receives_report_card,
                receives_notifications=link.receives_notifications,
                notes=link.notes,
            )
            for link in payload.students
        ]

    return RegistrationPlan(
        person=payload,
        role=ProfileRole.guardian,
        natural_key=NaturalKey(Guardian.national_id, payload.national_id, "national_id", "National ID"),
        role_model=Guardian,
        build_role_record=build,
        build_links=links,
        link_columns=[StudentGuardian.guardian_id],
        metadata={"national_id": payload.national_id},
    )


async def register_guardian(
    db: AsyncSession,
    provider: Optional[IdentityProvider],
    payload: GuardianCreate,
    *,
    check_duplicates_first: bool = True,
) -> RegistrationResult:
    plan = guardian_plan(payload)
    identity_id = await register_person(db, provider, plan, check_duplicates_first=check_duplicates_first)
    return RegistrationResult(id=identity_id)

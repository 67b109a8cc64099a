import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from datetime import date, datetime, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Any, AsyncGenerator, Dict, List, Optional, Set  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.auth.dependencies import optional_identity_provider  # noqa: E402
from app.auth.identity import Identity, IdentityProvider  # noqa: E402
from app.auth.security import create_access_token  # noqa: E402
from app.core.exceptions import IdentityError  # noqa: E402
from app.core.models import (  # noqa: E402
    AcademicYear,
    Department,
    FeeStructure,
    FeeStructureItem,
    FinancialAidType,
    Profile,
    SchoolClass,
    Sponsor,
    Student,
    StudentFee,
    StudentFinancialAid,
    Subject,
    Term,
)
from app.db.session import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402


TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakeIdentityProvider(IdentityProvider):
    """In-memory identity provisioner. Emails in fail_emails are rejected, next_id pins the next
    identity id, and deletes are recorded."""

    def __init__(self) -> None:
        self.identities: Dict[UUID, Identity] = {}
        self.passwords: Dict[str, str] = {}
        self.metadata: Dict[str, Dict[str, Any]] = {}
        self.deleted: List[UUID] = []
        self.fail_emails: Set[str] = set()
        self.fail_deletes = False
        self.create_calls = 0
        self.next_id: Optional[UUID] = None

    async def create_identity(self, email: str, password: str, metadata: Dict[str, Any]) -> Identity:
        self.create_calls += 1
        if email in self.fail_emails:
            raise IdentityError("Failed to create user account: provider unavailable")
        if any(i.email == email for i in self.identities.values()):
            raise IdentityError(
                "Email is already registered.",
                conflict=True,
                field_errors={"email": ["Email is already registered"]},
            )
        identity = Identity(id=self.next_id or uuid4(), email=email)
        self.next_id = None
        self.identities[identity.id] = identity
        self.passwords[email] = password
        self.metadata[email] = metadata
        return identity

    async def delete_identity(self, identity_id: UUID) -> None:
        if self.fail_deletes:
            raise IdentityError("delete failed")
        self.identities.pop(identity_id, None)
        self.deleted.append(identity_id)

    def has_email(self, email: str) -> bool:
        return any(i.email == email for i in self.identities.values())


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test; overrides the FastAPI session dependency."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture()
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture()
async def client(db_session: AsyncSession, identity_provider: FakeIdentityProvider) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, with the fake identity provider."""
    app.dependency_overrides[optional_identity_provider] = lambda: identity_provider
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(optional_identity_provider, None)


async def make_profile(db: AsyncSession, role: str, email: Optional[str] = None) -> Profile:
    profile = Profile(
        id=uuid4(),
        email=email or f"{role}-{uuid4().hex[:8]}@school.example.com",
        first_name=role.title(),
        last_name="User",
        role=role,
    )
    db.add(profile)
    await db.commit()
    return profile


def auth_headers(profile: Profile) -> Dict[str, str]:
    token = create_access_token(subject={"sub": str(profile.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
async def admin_headers(db_session: AsyncSession) -> Dict[str, str]:
    return auth_headers(await make_profile(db_session, "admin"))


@pytest.fixture()
async def school(db_session: AsyncSession) -> Dict[str, Any]:
    """Active academic year with one term, two classes, a department and two subjects."""
    year = AcademicYear(
        name="2025-2026",
        start_date=date(2025, 9, 1),
        end_date=date(2026, 7, 31),
        is_active=True,
    )
    db_session.add(year)
    await db_session.flush()
    term = Term(
        academic_year_id=year.id,
        name="Term 1",
        start_date=date(2025, 9, 1),
        end_date=date(2025, 12, 15),
    )
    form1 = SchoolClass(name="Form 1", display_order=1)
    form2 = SchoolClass(name="Form 2", display_order=2)
    science = Department(name="Science")
    db_session.add_all([term, form1, form2, science])
    await db_session.flush()
    maths = Subject(name="Mathematics", code="MAT", department_id=science.id)
    physics = Subject(name="Physics", code="PHY", department_id=science.id)
    db_session.add_all([maths, physics])
    await db_session.commit()
    return {
        "year": year,
        "term": term,
        "classes": {"Form 1": form1.id, "Form 2": form2.id},
        "department": science,
        "subjects": {"Mathematics": maths.id, "Physics": physics.id},
    }


async def make_student(db: AsyncSession, class_id: Optional[UUID] = None, code: Optional[str] = None) -> Student:
    profile = await make_profile(db, "student")
    student = Student(id=profile.id, student_id=code or f"STU{uuid4().hex[:6].upper()}", class_id=class_id)
    db.add(student)
    await db.commit()
    return student


@pytest.fixture()
async def fee_structure(db_session: AsyncSession, school: Dict[str, Any]) -> FeeStructure:
    """Term fee of 100,000: tuition 70,000 + boarding 25,000 + library 5,000."""
    structure = FeeStructure(
        name="Form 1 Term 1",
        academic_year_id=school["year"].id,
        term_id=school["term"].id,
        student_type="internal",
        total_amount=Decimal("100000"),
    )
    db_session.add(structure)
    await db_session.flush()
    db_session.add_all(
        [
            FeeStructureItem(fee_structure_id=structure.id, item_name="Tuition", amount=Decimal("70000"), display_order=1),
            FeeStructureItem(fee_structure_id=structure.id, item_name="Boarding", amount=Decimal("25000"), display_order=2),
            FeeStructureItem(fee_structure_id=structure.id, item_name="Library", amount=Decimal("5000"), display_order=3),
        ]
    )
    await db_session.commit()
    return structure


async def make_fee(
    db: AsyncSession,
    student: Student,
    structure: FeeStructure,
    total: Decimal = Decimal("100000"),
    balance: Optional[Decimal] = None,
    term_id: Optional[UUID] = None,
) -> StudentFee:
    fee = StudentFee(
        student_id=student.id,
        fee_structure_id=structure.id,
        academic_year_id=structure.academic_year_id,
        term_id=term_id or structure.term_id,
        total_amount=total,
        balance=total if balance is None else balance,
        due_date=date(2025, 10, 1),
    )
    db.add(fee)
    await db.commit()
    return fee


@pytest.fixture()
async def sponsor(db_session: AsyncSession) -> Sponsor:
    s = Sponsor(name="Malawi Education Trust")
    db_session.add(s)
    await db_session.commit()
    return s


async def make_aid_type(db: AsyncSession, sponsor: Sponsor, coverage_type: str = "full", **coverage) -> FinancialAidType:
    aid_type = FinancialAidType(sponsor_id=sponsor.id, name=f"{coverage_type} bursary", coverage_type=coverage_type, **coverage)
    db.add(aid_type)
    await db.commit()
    return aid_type


_award_clock = [datetime(2025, 8, 1)]


async def make_award(
    db: AsyncSession,
    student: Student,
    sponsor: Sponsor,
    academic_year_id: UUID,
    coverage_type: str = "full",
    status: str = "active",
    term_id: Optional[UUID] = None,
    **fields,
) -> StudentFinancialAid:
    """Awards get strictly increasing created_at so award-date order is deterministic."""
    aid_type = await make_aid_type(db, sponsor, coverage_type)
    _award_clock[0] += timedelta(minutes=1)
    award = StudentFinancialAid(
        student_id=student.id,
        sponsor_id=sponsor.id,
        financial_aid_type_id=aid_type.id,
        academic_year_id=academic_year_id,
        term_id=term_id,
        coverage_type=coverage_type,
        status=status,
        created_at=_award_clock[0],
        **fields,
    )
    db.add(award)
    await db.commit()
    return award

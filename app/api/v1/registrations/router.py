"""Registration router: single-record sagas, bulk uploads, and the name -> id mappings they use."""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import optional_identity_provider
from app.auth.identity import IdentityProvider
from app.auth.rbac import REGISTRAR_ROLES, require_roles
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import bulk_service, directory, service
from .schemas import (
    BulkUploadResult,
    GuardianBulkRequest,
    GuardianCreate,
    RegistrationResponse,
    StudentBulkRequest,
    StudentCreate,
    TeacherBulkRequest,
    TeacherCreate,
    TeacherMappings,
)

router = APIRouter(
    prefix="/api/v1/registrations",
    tags=["registrations"],
    dependencies=[Depends(require_roles(*REGISTRAR_ROLES))],
)


def _http_error(e: ServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail={"message": e.message, "errors": e.field_errors})


# --- Single records ---
@router.post("/students", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
    provider: Optional[IdentityProvider] = Depends(optional_identity_provider),
) -> RegistrationResponse:
    try:
        result = await service.register_student(db, provider, payload)
    except ServiceError as e:
        raise _http_error(e)
    return RegistrationResponse(
        success=True,
        message="Student registered successfully!",
        id=result.id,
        warnings=result.warnings,
    )


@router.post("/teachers", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_teacher(
    payload: TeacherCreate,
    db: AsyncSession = Depends(get_db),
    provider: Optional[IdentityProvider] = Depends(optional_identity_provider),
) -> RegistrationResponse:
    try:
        result = await service.register_teacher(db, provider, payload)
    except ServiceError as e:
        raise _http_error(e)
    return RegistrationResponse(success=True, message="Teacher registered successfully!", id=result.id)


@router.post("/guardians", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_guardian(
    payload: GuardianCreate,
    db: AsyncSession = Depends(get_db),
    provider: Optional[IdentityProvider] = Depends(optional_identity_provider),
) -> RegistrationResponse:
    try:
        result = await service.register_guardian(db, provider, payload)
    except ServiceError as e:
        raise _http_error(e)
    return RegistrationResponse(success=True, message="Guardian registered successfully!", id=result.id)


# --- Bulk ---
@router.post("/students/bulk", response_model=BulkUploadResult)
async def bulk_register_students(
    payload: StudentBulkRequest,
    db: AsyncSession = Depends(get_db),
    provider: Optional[IdentityProvider] = Depends(optional_identity_provider),
) -> BulkUploadResult:
    return await bulk_service.bulk_register_students(db, provider, payload.rows, payload.class_mapping)


@router.post("/teachers/bulk", response_model=BulkUploadResult)
async def bulk_register_teachers(
    payload: TeacherBulkRequest,
    db: AsyncSession = Depends(get_db),
    provider: Optional[IdentityProvider] = Depends(optional_identity_provider),
) -> BulkUploadResult:
    return await bulk_service.bulk_register_teachers(db, provider, payload.rows, payload.mappings)


@router.post("/guardians/bulk", response_model=BulkUploadResult)
async def bulk_register_guardians(
    payload: GuardianBulkRequest,
    db: AsyncSession = Depends(get_db),
    provider: Optional[IdentityProvider] = Depends(optional_identity_provider),
) -> BulkUploadResult:
    return await bulk_service.bulk_register_guardians(db, provider, payload.rows, payload.student_mapping)


@router.post("/upload/parse", response_model=List[Dict[str, Any]])
async def parse_upload(file: UploadFile = File(...)) -> List[Dict[str, Any]]:
    """Parse an .xlsx sheet into rows for the bulk endpoints. Nothing is written."""
    content = await file.read()
    try:
        return bulk_service.parse_bulk_upload(content, file.filename)
    except ServiceError as e:
        raise _http_error(e)


# --- Mappings ---
@router.get("/mappings/classes", response_model=Dict[str, UUID])
async def get_class_mapping(db: AsyncSession = Depends(get_db)) -> Dict[str, UUID]:
    return await directory.get_class_mapping(db)


@router.get("/mappings/teachers", response_model=TeacherMappings)
async def get_teacher_mappings(db: AsyncSession = Depends(get_db)) -> TeacherMappings:
    return await bulk_service.get_teacher_mappings(db)


@router.get("/mappings/students", response_model=Dict[str, UUID])
async def get_student_code_mapping(db: AsyncSession = Depends(get_db)) -> Dict[str, UUID]:
    return await directory.get_student_code_mapping(db)

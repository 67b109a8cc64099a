"""Fees router: invoice generation, financial aid awards, sponsors and sponsor payments."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import FINANCE_ROLES, require_roles
from app.auth.schemas import CurrentUser
from app.core.enums import AidStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import aid_service, invoice_service, sponsor_service
from .schemas import (
    ActiveAid,
    AidAwardCreate,
    AidAwardResponse,
    AidRevoke,
    AidStatusUpdate,
    AllocationResponse,
    ApplyAidRequest,
    ApplyAidResult,
    BulkAidAssign,
    BulkAidAssignResult,
    FinancialAidTypeCreate,
    FinancialAidTypeResponse,
    InvoiceGenerationResult,
    InvoicePeriod,
    InvoicePreview,
    ManualAllocationRequest,
    SponsorCreate,
    SponsorPaymentCreate,
    SponsorPaymentResponse,
    SponsorPaymentResult,
    SponsorResponse,
)

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])

admin_only = require_roles(*FINANCE_ROLES)


# --- Invoices ---
@router.post("/invoices/generate", response_model=InvoiceGenerationResult)
async def generate_invoices(
    payload: InvoicePeriod,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(admin_only),
) -> InvoiceGenerationResult:
    try:
        return await invoice_service.generate_invoices(
            db, payload.academic_year_id, payload.term_id, generated_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/invoices/preview", response_model=InvoicePreview, dependencies=[Depends(admin_only)])
async def preview_invoice_generation(
    academic_year_id: UUID,
    term_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> InvoicePreview:
    try:
        return await invoice_service.preview_invoice_generation(db, academic_year_id, term_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/invoices/apply-aid", response_model=ApplyAidResult, dependencies=[Depends(admin_only)])
async def apply_aid_to_invoice(
    payload: ApplyAidRequest,
    db: AsyncSession = Depends(get_db),
) -> ApplyAidResult:
    try:
        return await invoice_service.apply_aid_to_invoice(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Financial aid ---
@router.post("/aid", response_model=AidAwardResponse, status_code=status.HTTP_201_CREATED)
async def assign_aid_to_student(
    payload: AidAwardCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(admin_only),
) -> AidAwardResponse:
    try:
        return await aid_service.assign_aid_to_student(db, payload, assigned_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/aid/bulk", response_model=BulkAidAssignResult)
async def bulk_assign_aid(
    payload: BulkAidAssign,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(admin_only),
) -> BulkAidAssignResult:
    try:
        return await aid_service.bulk_assign_aid(db, payload, assigned_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/aid", response_model=List[AidAwardResponse], dependencies=[Depends(admin_only)])
async def list_aid_awards(
    student_id: Optional[UUID] = Query(None),
    sponsor_id: Optional[UUID] = Query(None),
    academic_year_id: Optional[UUID] = Query(None),
    status_filter: Optional[AidStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> List[AidAwardResponse]:
    return await aid_service.list_aid_awards(
        db,
        student_id=student_id,
        sponsor_id=sponsor_id,
        academic_year_id=academic_year_id,
        status_filter=status_filter,
    )


@router.get("/aid/active/{student_id}", response_model=List[ActiveAid], dependencies=[Depends(admin_only)])
async def get_active_student_aid(
    student_id: UUID,
    academic_year_id: UUID,
    term_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[ActiveAid]:
    return await aid_service.get_active_student_aid(db, student_id, academic_year_id, term_id)


@router.patch("/aid/{aid_id}/status", response_model=AidAwardResponse)
async def update_aid_status(
    aid_id: UUID,
    payload: AidStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(admin_only),
) -> AidAwardResponse:
    try:
        return await aid_service.update_aid_status(db, aid_id, payload, updated_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/aid/{aid_id}/revoke", response_model=AidAwardResponse, dependencies=[Depends(admin_only)])
async def revoke_aid(
    aid_id: UUID,
    payload: AidRevoke,
    db: AsyncSession = Depends(get_db),
) -> AidAwardResponse:
    try:
        return await aid_service.revoke_aid(db, aid_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Sponsors ---
@router.post(
    "/sponsors",
    response_model=SponsorResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(admin_only)],
)
async def create_sponsor(payload: SponsorCreate, db: AsyncSession = Depends(get_db)) -> SponsorResponse:
    try:
        return await sponsor_service.create_sponsor(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/sponsors", response_model=List[SponsorResponse], dependencies=[Depends(admin_only)])
async def list_sponsors(
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
) -> List[SponsorResponse]:
    return await sponsor_service.list_sponsors(db, active_only=active_only)


@router.post(
    "/aid-types",
    response_model=FinancialAidTypeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(admin_only)],
)
async def create_financial_aid_type(
    payload: FinancialAidTypeCreate,
    db: AsyncSession = Depends(get_db),
) -> FinancialAidTypeResponse:
    try:
        return await sponsor_service.create_financial_aid_type(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Sponsor payments ---
@router.post("/sponsor-payments", response_model=SponsorPaymentResult, status_code=status.HTTP_201_CREATED)
async def record_sponsor_payment(
    payload: SponsorPaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(admin_only),
) -> SponsorPaymentResult:
    try:
        return await sponsor_service.record_sponsor_payment(db, payload, recorded_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/sponsor-payments", response_model=List[SponsorPaymentResponse], dependencies=[Depends(admin_only)])
async def list_sponsor_payments(
    sponsor_id: Optional[UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[SponsorPaymentResponse]:
    return await sponsor_service.list_sponsor_payments(db, sponsor_id, from_date, to_date)


@router.post("/sponsor-payments/{payment_id}/allocations", response_model=List[AllocationResponse])
async def allocate_sponsor_payment(
    payment_id: UUID,
    payload: ManualAllocationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(admin_only),
) -> List[AllocationResponse]:
    try:
        return await sponsor_service.allocate_sponsor_payment(db, payment_id, payload, allocated_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/sponsor-payments/{payment_id}/allocations",
    response_model=List[AllocationResponse],
    dependencies=[Depends(admin_only)],
)
async def get_payment_allocations(payment_id: UUID, db: AsyncSession = Depends(get_db)) -> List[AllocationResponse]:
    return await sponsor_service.get_payment_allocations(db, payment_id)

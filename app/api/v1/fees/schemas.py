"""Fees schemas: aid awards, invoice generation, sponsors and their payments."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, model_validator

from app.core.enums import AidStatus, AllocationOrder, CoverageType, InvoiceStatus


# --- Financial aid ---
class AidAwardCreate(BaseModel):
    """Coverage fields left empty fall back to the aid type's defaults."""

    student_id: UUID
    financial_aid_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    coverage_type: Optional[CoverageType] = None
    coverage_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    coverage_amount: Optional[Decimal] = Field(None, ge=0)
    covered_items: Optional[List[str]] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    conditions: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_window(self) -> "AidAwardCreate":
        if self.valid_from and self.valid_until and self.valid_until < self.valid_from:
            raise ValueError("valid_until must not be before valid_from")
        return self


class BulkAidAssign(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)
    financial_aid_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    conditions: Optional[str] = None
    notes: Optional[str] = None


class BulkAidAssignResult(BaseModel):
    assigned_count: int
    failed_count: int
    message: str


class AidStatusUpdate(BaseModel):
    status: AidStatus
    rejection_reason: Optional[str] = None


class AidRevoke(BaseModel):
    reason: str = Field(..., min_length=1)


class AidAwardResponse(BaseModel):
    id: UUID
    student_id: UUID
    sponsor_id: UUID
    financial_aid_type_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None
    coverage_type: CoverageType
    coverage_percentage: Optional[Decimal] = None
    coverage_amount: Optional[Decimal] = None
    covered_items: Optional[List[str]] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    status: AidStatus
    calculated_aid_amount: Optional[Decimal] = None
    conditions: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ActiveAid(BaseModel):
    """A qualifying award with the sponsor name, as used by the aid calculator."""

    aid_id: UUID
    sponsor_id: UUID
    sponsor_name: str
    coverage_type: CoverageType
    calculated_aid_amount: Optional[Decimal] = None


# --- Invoices ---
class InvoicePeriod(BaseModel):
    academic_year_id: UUID
    term_id: UUID


class GeneratedInvoice(BaseModel):
    invoice_number: str
    student_fee_id: UUID


class InvoiceGenerationResult(BaseModel):
    created: int
    skipped: int
    total_amount: Decimal
    invoices: List[GeneratedInvoice] = Field(default_factory=list)
    message: str


class InvoicePreview(BaseModel):
    total_invoices: int
    internal_count: int
    external_count: int
    total_amount: Decimal
    already_generated: int


class ApplyAidRequest(BaseModel):
    student_id: UUID
    academic_year_id: UUID
    term_id: Optional[UUID] = None


class ApplyAidResult(BaseModel):
    aid_amount: Decimal
    new_balance: Decimal
    invoice_status: Optional[InvoiceStatus] = None
    message: str


# --- Sponsors ---
class SponsorCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    contact_email: Optional[EmailStr] = None


class SponsorResponse(BaseModel):
    id: UUID
    name: str
    contact_email: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class FinancialAidTypeCreate(BaseModel):
    sponsor_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    coverage_type: CoverageType = CoverageType.full
    coverage_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    coverage_amount: Optional[Decimal] = Field(None, ge=0)
    covered_items: Optional[List[str]] = None


class FinancialAidTypeResponse(BaseModel):
    id: UUID
    sponsor_id: UUID
    name: str
    description: Optional[str] = None
    coverage_type: CoverageType
    coverage_percentage: Optional[Decimal] = None
    coverage_amount: Optional[Decimal] = None
    covered_items: Optional[List[str]] = None
    is_active: bool

    class Config:
        from_attributes = True


class SponsorPaymentCreate(BaseModel):
    sponsor_id: UUID
    amount: Decimal = Field(..., gt=0)
    payment_date: date
    payment_method: Optional[str] = Field(None, description="BANK, CHEQUE, CASH, MOBILE")
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    auto_allocate: bool = False
    allocation_order: AllocationOrder = AllocationOrder.award_date


class SponsorPaymentResponse(BaseModel):
    id: UUID
    sponsor_id: UUID
    amount: Decimal
    unallocated_amount: Decimal
    payment_date: date
    payment_method: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AllocationItem(BaseModel):
    student_id: UUID
    student_fee_id: UUID
    allocated_amount: Decimal = Field(..., gt=0)
    allocation_date: Optional[date] = None


class ManualAllocationRequest(BaseModel):
    allocations: List[AllocationItem] = Field(..., min_length=1)


class AllocationResponse(BaseModel):
    id: UUID
    sponsor_payment_id: UUID
    student_id: UUID
    student_fee_id: UUID
    allocated_amount: Decimal
    allocation_date: date
    allocated_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class SponsorPaymentResult(BaseModel):
    payment: SponsorPaymentResponse
    allocations: List[AllocationResponse] = Field(default_factory=list)
    message: str

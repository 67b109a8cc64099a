from enum import Enum


class ProfileRole(str, Enum):
    student = "student"
    teacher = "teacher"
    guardian = "guardian"
    admin = "admin"
    headteacher = "headteacher"
    deputy_headteacher = "deputy_headteacher"


class TeacherType(str, Enum):
    permanent = "permanent"
    temporary = "temporary"
    tp = "tp"


class GuardianRelationship(str, Enum):
    father = "father"
    mother = "mother"
    stepfather = "stepfather"
    stepmother = "stepmother"
    grandfather = "grandfather"
    grandmother = "grandmother"
    uncle = "uncle"
    aunt = "aunt"
    brother = "brother"
    sister = "sister"
    legal_guardian = "legal_guardian"
    foster_parent = "foster_parent"
    other = "other"


class CoverageType(str, Enum):
    full = "full"
    percentage = "percentage"
    fixed_amount = "fixed_amount"
    specific_items = "specific_items"


class AidStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    active = "active"
    suspended = "suspended"
    completed = "completed"
    rejected = "rejected"


# Awards that count towards aid and sponsor allocation
QUALIFYING_AID_STATUSES = (AidStatus.active.value, AidStatus.approved.value)
# Awards that block a second award from the same sponsor for the same period
OPEN_AID_STATUSES = (AidStatus.pending.value, AidStatus.approved.value, AidStatus.active.value)


class InvoiceStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"


class AllocationOrder(str, Enum):
    award_date = "award_date"
    largest_balance = "largest_balance"


class BulkErrorType(str, Enum):
    duplicate = "duplicate"
    validation = "validation"
    auth = "auth"
    database = "database"

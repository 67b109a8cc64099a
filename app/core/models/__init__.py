from app.core.models.academic_year import AcademicYear, Term
from app.core.models.class_model import SchoolClass
from app.core.models.department import Department
from app.core.models.subject import Subject
from app.core.models.profile import Guardian, Profile, Student, Teacher
from app.core.models.directory_links import StudentGuardian, TeacherClass, TeacherSubject
from app.core.models.enrollment import Enrollment
from app.core.models.fee_structure import FeeStructure, FeeStructureItem
from app.core.models.student_fee import StudentFee
from app.core.models.invoice import Invoice, InvoiceItem
from app.core.models.sponsor import FinancialAidType, Sponsor
from app.core.models.student_financial_aid import StudentFinancialAid
from app.core.models.sponsor_payment import SponsorPayment, SponsorPaymentAllocation

__all__ = [
    "AcademicYear",
    "Term",
    "SchoolClass",
    "Department",
    "Subject",
    "Profile",
    "Student",
    "Teacher",
    "Guardian",
    "TeacherSubject",
    "TeacherClass",
    "StudentGuardian",
    "Enrollment",
    "FeeStructure",
    "FeeStructureItem",
    "StudentFee",
    "Invoice",
    "InvoiceItem",
    "Sponsor",
    "FinancialAidType",
    "StudentFinancialAid",
    "SponsorPayment",
    "SponsorPaymentAllocation",
]

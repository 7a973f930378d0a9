from app.core.models.student import Student
from app.core.models.class_model import SchoolClass
from app.core.models.enrollment import Enrollment
from app.core.models.fee_structure import FeeStructure, FeeStructureClass
from app.core.models.ledger_record import LedgerRecord
from app.core.models.payment import Payment
from app.core.models.credit_transfer import CreditTransfer
from app.core.models.unmatched_payment import UnmatchedPayment
from app.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "Student",
    "SchoolClass",
    "Enrollment",
    "FeeStructure",
    "FeeStructureClass",
    "LedgerRecord",
    "Payment",
    "CreditTransfer",
    "UnmatchedPayment",
    "FeeAuditLog",
]

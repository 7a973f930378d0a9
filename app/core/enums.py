from enum import Enum


class StudentType(str, Enum):
    DAY_SCHOLAR = "DayScholar"
    BOARDING = "Boarding"


class FeeCategory(str, Enum):
    MANDATORY = "Mandatory"
    OPTIONAL = "Optional"


class LedgerStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overpaid = "overpaid"


class PaymentStatus(str, Enum):
    completed = "completed"
    reversed = "reversed"


class PaymentSource(str, Enum):
    MANUAL = "manual"
    BANK_WEBHOOK = "bank_webhook"
    RECONCILIATION = "reconciliation"


class UnmatchedPaymentStatus(str, Enum):
    unmatched_student = "unmatched_student"
    unmatched_ledger = "unmatched_ledger"
    reconciled = "reconciled"


class CreditTargetPolicy(str, Enum):
    # later_term: only records in a strictly later (academic_year, term) absorb credit.
    # next_record: any record later in (academic_year, term, created_at) order, same-term siblings included.
    LATER_TERM = "later_term"
    NEXT_RECORD = "next_record"


class TermSource(str, Enum):
    EXPLICIT = "explicit"
    OUTSTANDING = "outstanding"
    LATEST_BILLED = "latest_billed"
    CALENDAR = "calendar"

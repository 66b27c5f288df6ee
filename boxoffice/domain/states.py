from enum import StrEnum, auto

class JobStatus(StrEnum):
    PENDING = auto()     # Waiting for next_run_at, claimable
    PROCESSING = auto()  # Claimed by a dispatcher
    SUCCEEDED = auto()   # Handler finished
    FAILED = auto()      # Audit only: failed attempts are requeued as PENDING
    DEAD = auto()        # Dead letter, never retried automatically

class JobType(StrEnum):
    PAYMENT_CREATION = auto()
    PAYMENT_WEBHOOK = auto()
    ORPHANED_ORDER_CLEANUP = auto()
    CLEANUP_OLD_JOBS = auto()

class JobEvent(StrEnum):
    CREATED = auto()
    CLAIMED = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    DEAD = auto()
    RECLAIMED = auto()
    RETRIED = auto()

class OrderStatus(StrEnum):
    PENDING = auto()
    PAID = auto()
    FAILED = auto()
    CANCELLED = auto()

class PaymentStatus(StrEnum):
    PENDING = auto()
    PROCESSING = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()

class PaymentProviderName(StrEnum):
    MOLLIE = auto()
    MOCK = auto()

class PerformanceStatus(StrEnum):
    DRAFT = auto()
    PUBLISHED = auto()
    SOLD_OUT = auto()
    CANCELLED = auto()
    ARCHIVED = auto()

TERMINAL_JOB_STATUSES = (JobStatus.SUCCEEDED, JobStatus.DEAD)
ACTIVE_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)
TERMINAL_PAYMENT_STATUSES = (PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.CANCELLED)

from enum import StrEnum, auto


class ErrorKind(StrEnum):
    TRANSIENT = auto()  # Retry with backoff
    PERMANENT = auto()  # Dead-letter immediately


class JobError(Exception):
    """Base exception for job engine errors.

    ``kind`` is set by whoever raises the error and is the only thing the
    dispatcher looks at when choosing between retry and dead-letter.
    """
    kind: ErrorKind = ErrorKind.TRANSIENT

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

class TransientJobError(JobError):
    kind = ErrorKind.TRANSIENT

class PermanentJobError(JobError):
    kind = ErrorKind.PERMANENT

class ConfigurationError(PermanentJobError):
    pass

class InvalidPayloadError(PermanentJobError):
    def __init__(self, job_type, detail):
        super().__init__(f"Invalid payload for {job_type}: {detail}")

class UnknownJobTypeError(PermanentJobError):
    def __init__(self, job_type):
        super().__init__(f"No handler registered for job type {job_type!r}")

# Job store

class JobNotFoundError(PermanentJobError):
    def __init__(self, job_id):
        super().__init__(f"Job {job_id} not found")

class InvalidJobStateError(PermanentJobError):
    def __init__(self, current_status, target_status):
        super().__init__(f"Cannot transition from {current_status} to {target_status}")

# Payment provider

class ProviderError(JobError):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code

class ProviderUnavailableError(ProviderError):
    """Network failure, timeout, 5xx or rate limiting."""
    kind = ErrorKind.TRANSIENT

class ProviderAuthError(ProviderError):
    kind = ErrorKind.PERMANENT

class ProviderRejectedError(ProviderError):
    kind = ErrorKind.PERMANENT

class ProviderNotConfiguredError(ProviderError, ConfigurationError):
    kind = ErrorKind.PERMANENT

# Orders and payments

class OrderNotFoundError(PermanentJobError):
    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found")

class PaymentNotFoundError(PermanentJobError):
    def __init__(self, transaction_id):
        super().__init__(f"No payment record for provider transaction {transaction_id}")

class PaymentConflictError(PermanentJobError):
    pass

class ReconciliationRaceError(TransientJobError):
    pass

# Inventory

class InsufficientSeatsError(Exception):
    """Raised synchronously to the order caller; never enters the job queue."""

    def __init__(self, performance_id, requested):
        super().__init__(f"Not enough seats left on performance {performance_id} for {requested} ticket(s)")
        self.performance_id = performance_id
        self.requested = requested

class InvalidOrderError(ValueError):
    pass


def error_kind(exc: BaseException) -> ErrorKind:
    """Anything that did not declare a kind (database hiccups, bugs) is retried."""
    if isinstance(exc, JobError):
        return exc.kind
    return ErrorKind.TRANSIENT

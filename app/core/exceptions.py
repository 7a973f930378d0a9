from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidInputError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictError(ServiceError):
    """Already processed (e.g. duplicate transaction reference). Callers must not retry."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class LedgerIntegrityError(ServiceError):
    """Stored ledger totals disagree with the payments behind them. Always a bug."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class LedgerBusyError(ServiceError):
    """Ledger lock could not be taken (or the transaction kept failing) after the allowed retries."""

    def __init__(self, message: str = "Ledger is busy, retry the request") -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)

class LedgerError(Exception):
    """Base class for wallet and referral failures surfaced to callers."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerError):
    status_code = 404


class InsufficientFundsError(LedgerError):
    pass


class InvalidAmountError(LedgerError):
    pass


class InvalidStateError(LedgerError):
    status_code = 409


class InvalidOperationError(LedgerError):
    pass


class DuplicateAttributionError(LedgerError):
    """A bonus already exists for this (referrer, referred user, type) triple."""

    status_code = 409

class SettlementError(Exception):
    pass


class NotFoundError(SettlementError):
    pass


class ValidationError(SettlementError):
    pass


class ConcurrencyError(SettlementError):
    """An atomic balance update did not apply (for example the row is gone)."""


class InvalidStateTransitionError(ValidationError):
    pass


class DuplicateRecordError(SettlementError):
    """A write collided with a uniqueness rule on an existing row."""

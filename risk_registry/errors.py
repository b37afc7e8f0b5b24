"""
Error taxonomy for the registry.

Every failure aborts the enclosing operation as a whole; callers receive
one of the classes below with a human-readable reason.
"""


class ValidationError(Exception):
    """Raised when validation fails."""
    pass


class UnauthorizedError(ValidationError):
    """Caller failed a role or identity check."""
    pass


class NotFoundError(ValidationError):
    pass


class DuplicateIdError(ValidationError):
    pass


class InvalidStateTransitionError(ValidationError):
    """Operation is not allowed from the reporter's current status."""
    pass


class AlreadyActiveError(InvalidStateTransitionError):
    pass


class InsufficientAllowanceError(ValidationError):
    pass


class TransferFailedError(ValidationError):
    pass


class InvalidAddressFormatError(ValidationError):
    """Address text or bytes do not match the schema's expected shape."""
    pass


class InvalidSeedsError(ValidationError):
    """Seeds exceed the derivation limits or land on the ed25519 curve."""
    pass


class SeedExhaustedError(ValidationError):
    """No bump produced an address outside the ed25519 curve."""
    pass


class AlreadyInitializedError(ValidationError):
    pass


class NotInitializedError(ValidationError):
    pass

from __future__ import annotations


class CRMError(Exception):
    """Base class for errors raised by the CRM services."""

    code = "crm_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(CRMError):
    """Input failed a shape or range check; nothing was written."""

    code = "validation_error"


class NotFoundError(CRMError):
    """A referenced company, contact, opportunity or user does not exist."""

    code = "not_found"


class ConstraintError(CRMError):
    """Storage rejected the write (foreign key or uniqueness violation)."""

    code = "constraint_violation"

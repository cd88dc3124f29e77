"""
Typed exceptions for the invoicing core.

Every error carries a static ``code`` (machine readable) and the HTTP
``status_code`` the Flask boundary answers with. Computation code raises
these and lets them propagate; only ``app.py`` turns them into responses.

    InvoicingError
    +-- NotFoundError
    +-- ValidationError
    |   +-- DisallowedFieldError
    |   +-- InvalidTransitionError
    +-- ConflictError
    +-- DependencyError
        +-- StorageUnavailableError
"""


class InvoicingError(Exception):
    code = "INVOICING_ERROR"
    status_code = 500

    def __init__(self, message, details=None):
        self.message = message
        self.details = list(details or [])
        super().__init__(message)

    def to_dict(self):
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(InvoicingError):
    """Record is missing or belongs to another owner."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity, entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class ValidationError(InvoicingError):
    code = "VALIDATION_ERROR"
    status_code = 400


class DisallowedFieldError(ValidationError):
    code = "INVALID_UPDATES"

    def __init__(self, fields):
        self.fields = sorted(fields)
        super().__init__(
            "Invalid updates!",
            details=[f"{name}: field cannot be updated" for name in self.fields],
        )


class InvalidTransitionError(ValidationError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move invoice from '{current}' to '{requested}'")


class ConflictError(InvoicingError):
    """Duplicate invoice number. Points at a counter store fault."""

    code = "DUPLICATE_INVOICE_NUMBER"
    status_code = 500


class DependencyError(InvoicingError):
    code = "DEPENDENCY_UNAVAILABLE"
    status_code = 503


class StorageUnavailableError(DependencyError):
    code = "STORAGE_UNAVAILABLE"

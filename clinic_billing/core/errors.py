# FILE: clinic_billing/core/errors.py
from __future__ import annotations

from typing import Any, Optional


class BillingError(Exception):
    """
    Base for every failure the billing core reports to a caller.

    status_code / code are stable and rendered by the API exception
    handlers; extra carries safe context (ids, amounts) only.
    """

    status_code: int = 400
    code: str = "BILLING_ERROR"
    public_msg: Optional[str] = None

    def __init__(self,
                 msg: str,
                 status_code: Optional[int] = None,
                 extra: Optional[dict] = None):
        super().__init__(msg)
        self.msg = msg
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    @property
    def client_msg(self) -> str:
        return self.public_msg or self.msg


class ValidationError(BillingError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InvoiceCancelledError(ValidationError):
    code = "INVOICE_CANCELLED"


class NotFoundError(BillingError):
    # also raised when the access scope hides an invoice
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, msg: str = "Not found", **kw: Any):
        super().__init__(msg, **kw)


class AlreadyBilledError(BillingError):
    status_code = 409
    code = "ALREADY_BILLED"


class ConflictError(BillingError):
    status_code = 409
    code = "CONFLICT"


class ConfigurationError(BillingError):
    status_code = 500
    code = "CONFIGURATION_ERROR"
    public_msg = "Billing is not configured to price this request"

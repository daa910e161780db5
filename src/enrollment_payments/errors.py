"""Exception types shared by webhook ingestion and reconciliation."""

from typing import Optional


class PaymentsError(Exception):
    """Base class for payment integration errors."""

    code = "payments_error"


class InvalidNotificationError(PaymentsError):
    """A provider notification is missing its topic or resource id."""

    code = "invalid_notification"


class CredentialsMissingError(PaymentsError):
    """No access token could be resolved at any credential level."""

    code = "mp_credentials_missing"

    def __init__(self, tenant_id: Optional[str] = None):
        self.tenant_id = tenant_id
        scope = f"tenant {tenant_id}" if tenant_id else "global scope"
        super().__init__(f"No Mercado Pago credentials configured for {scope}")


class UpstreamError(PaymentsError):
    """The payment provider answered with a non-success status or was unreachable."""

    code = "upstream_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(PaymentsError):
    """A write to submissions or payment events failed."""

    code = "persistence_error"

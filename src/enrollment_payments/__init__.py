# enrollment_payments package
__version__ = "0.1.0"

from .database import (
    Submission,
    PaymentEvent,
    ProviderCredential,
    PaymentStatus,
    init_db,
    close_db,
    get_db,
)
from .errors import (
    PaymentsError,
    InvalidNotificationError,
    CredentialsMissingError,
    UpstreamError,
    PersistenceError,
)
from .status import derive_payment_status, select_latest
from .credentials import CredentialResolver, mask_token
from .services import SubmissionPaymentService
from .webhooks import PaymentNotification, WebhookIngestionService, parse_notification

# Reconciliation exports
from .reconciliation import (
    ReconciliationService,
    SweepRequest,
    SweepResult,
    SweepItemResult,
    StatusCheckResult,
)

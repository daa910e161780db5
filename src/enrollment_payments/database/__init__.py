"""Database module for submission and payment event persistence."""

from .models import (
    Base,
    Submission,
    PaymentEvent,
    ProviderCredential,
    PaymentStatus,
    CredentialScope,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    DatabaseManager,
)
from .repository import (
    SubmissionRepository,
    PaymentEventRepository,
    CredentialRepository,
)

__all__ = [
    # Models
    "Base",
    "Submission",
    "PaymentEvent",
    "ProviderCredential",
    "PaymentStatus",
    "CredentialScope",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "DatabaseManager",
    # Repositories
    "SubmissionRepository",
    "PaymentEventRepository",
    "CredentialRepository",
]

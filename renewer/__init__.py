"""
Certificate renewal for SCION AS certificates.

This package contains:
- expiry: certificate expiry evaluation
- authority: certificate authority operations (scion-pki wrapper)
- credential_store: staging, commit and rollback of the cert/key files
- orchestrator: the renewal state machine
- config_loader: configuration loading and validation
- logger: centralized logging setup
- notification: notification system for renewal events
"""

from .logger import setup_logger, get_logger
from .config_loader import (
    build_config,
    Config,
    ConfigurationError,
    RenewalRequest,
)
from .expiry import (
    expires_soon,
    is_expiring_soon,
    get_certificate_expiry,
    CertificateError,
    CertificateReadError,
    CertificateDecodeError,
    CertificateParseError,
)
from .authority import CredentialAuthority, ScionPKIAuthority, AuthorityError
from .credential_store import CredentialStore, StagedCredential, FilesystemError
from .orchestrator import (
    RenewalOrchestrator,
    RenewalResult,
    RenewalState,
    RenewalStatus,
)
from .notification import NotificationManager, NotificationContext

__all__ = [
    # Logger
    "setup_logger",
    "get_logger",
    # Config
    "build_config",
    "Config",
    "ConfigurationError",
    "RenewalRequest",
    # Expiry
    "expires_soon",
    "is_expiring_soon",
    "get_certificate_expiry",
    "CertificateError",
    "CertificateReadError",
    "CertificateDecodeError",
    "CertificateParseError",
    # Authority
    "CredentialAuthority",
    "ScionPKIAuthority",
    "AuthorityError",
    # Credential files
    "CredentialStore",
    "StagedCredential",
    "FilesystemError",
    # Orchestration
    "RenewalOrchestrator",
    "RenewalResult",
    "RenewalState",
    "RenewalStatus",
    # Notifications
    "NotificationManager",
    "NotificationContext",
]

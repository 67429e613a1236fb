"""
Renewal orchestration.

One run walks the state machine

    START -> EVALUATING -> SKIPPED
                        -> STAGING -> RENEWING -> VALIDATING -> VERIFYING
                           -> COMMITTING -> DONE

and ends in FAILED on any error. A failed run never leaves the live
certificate/key pair modified, and staged files never outlive the run.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .authority import AuthorityError, CredentialAuthority
from .config_loader import Config
from .credential_store import CredentialStore, FilesystemError, StagedCredential
from .expiry import (
    CertificateError,
    format_days_remaining,
    get_certificate_expiry,
    is_expiring_soon,
)
from .logger import get_logger


class RenewalState(Enum):
    """States of a single renewal run."""
    START = "start"
    EVALUATING = "evaluating"
    SKIPPED = "skipped"
    STAGING = "staging"
    RENEWING = "renewing"
    VALIDATING = "validating"
    VERIFYING = "verifying"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = (RenewalState.SKIPPED, RenewalState.DONE, RenewalState.FAILED)


class RenewalStatus(Enum):
    """Outcome of a renewal run."""
    RENEWED = "renewed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RenewalResult:
    """Result of a certificate renewal run."""
    status: RenewalStatus
    message: str
    cert_path: str
    not_after: Optional[datetime] = None
    new_not_after: Optional[datetime] = None
    failed_state: Optional[RenewalState] = None
    states: List[RenewalState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status != RenewalStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "cert_path": self.cert_path,
            "status": self.status.value.upper(),
            "message": self.message,
            "not_after": self.not_after.isoformat() if self.not_after else None,
            "new_not_after": self.new_not_after.isoformat() if self.new_not_after else None,
            "failed_state": self.failed_state.name if self.failed_state else None,
            "states": [state.name for state in self.states],
        }


class RenewalOrchestrator:
    """
    Drives one renewal attempt for the configured certificate/key pair.

    Args:
        config: Validated configuration
        authority: Certificate authority used to renew, validate and verify
        store: Credential files, defaults to the configured cert/key paths
        clock: Returns the current time, used for the expiry decision
    """

    def __init__(
        self,
        config: Config,
        authority: CredentialAuthority,
        store: Optional[CredentialStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.request = config.request
        self.authority = authority
        self.store = store or CredentialStore(
            self.request.cert_path, self.request.key_path, config.settings.temp_dir
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger()
        self.state = RenewalState.START
        self.history: List[RenewalState] = [RenewalState.START]
        self._tag = f"[{os.path.basename(self.request.cert_path)}]"

    def _transition(self, new_state: RenewalState) -> None:
        self.logger.info(f"{self._tag} {self.state.name} -> {new_state.name}")
        self.state = new_state
        self.history.append(new_state)

    def _result(self, status: RenewalStatus, message: str, **kwargs) -> RenewalResult:
        return RenewalResult(
            status=status,
            message=message,
            cert_path=self.request.cert_path,
            states=list(self.history),
            **kwargs,
        )

    def run(self) -> RenewalResult:
        """
        Run the renewal state machine once.

        Returns:
            RenewalResult with status RENEWED, SKIPPED or FAILED. Failures
            carry the error text in the message.
        """
        if self.state != RenewalState.START:
            raise RuntimeError("A renewal orchestrator can only run once")

        tag = self._tag
        staged: Optional[StagedCredential] = None
        not_after: Optional[datetime] = None

        try:
            dry_run = self.config.settings.dry_run
            recovered = self.store.recover(dry_run=dry_run)
            if recovered:
                outcome = f"would be {recovered}" if dry_run else recovered
                self.logger.warning(f"{tag} Interrupted commit from an earlier run: {outcome}")

            self._transition(RenewalState.EVALUATING)
            now = self._clock()
            days = self.request.renew_before_days
            self.logger.info(f"{tag} Checking cert {self.request.cert_path} to expire within {days} days")

            not_after = get_certificate_expiry(self.request.cert_path)
            days_remaining = format_days_remaining(not_after, now)

            if not is_expiring_soon(not_after, days, now):
                self.logger.info(
                    f"{tag} Not expiring within {days} days ({days_remaining} days remaining), skipping"
                )
                self._transition(RenewalState.SKIPPED)
                return self._result(
                    RenewalStatus.SKIPPED,
                    f"Not expiring soon ({days_remaining} days remaining)",
                    not_after=not_after,
                )

            self.logger.warning(f"{tag} Expires in {days_remaining} days - renewal needed")

            if dry_run:
                self.logger.info(f"{tag} DRY RUN - would renew certificate")
                self._transition(RenewalState.SKIPPED)
                return self._result(
                    RenewalStatus.SKIPPED,
                    f"Dry run - would renew ({days_remaining} days remaining)",
                    not_after=not_after,
                )

            self._transition(RenewalState.STAGING)
            staged = self.store.stage()
            self.logger.debug(f"{tag} Staging to {staged.cert_path} and {staged.key_path}")

            self._transition(RenewalState.RENEWING)
            self.authority.renew(
                self.request.cert_path,
                self.request.key_path,
                self.request.trc_path,
                staged.cert_path,
                staged.key_path,
            )
            self.logger.info(f"{tag} Obtained new cert and key")

            self._transition(RenewalState.VALIDATING)
            new_not_after = self._check_staged(staged, not_after, now)
            self.authority.validate(staged.cert_path)

            self._transition(RenewalState.VERIFYING)
            self.authority.verify(staged.cert_path, self.request.trc_path)

            self._transition(RenewalState.COMMITTING)
            self.store.commit(staged)

            self._transition(RenewalState.DONE)
            self.logger.success(f"{tag} Renewed, new cert valid until {new_not_after.isoformat()}")
            return self._result(
                RenewalStatus.RENEWED,
                "Successfully renewed",
                not_after=not_after,
                new_not_after=new_not_after,
            )

        except (CertificateError, AuthorityError, FilesystemError) as e:
            failed_state = self.state
            self._transition(RenewalState.FAILED)
            self.logger.failure(f"{tag} Renewal failed while {failed_state.name}: {e}")
            return self._result(
                RenewalStatus.FAILED,
                str(e),
                not_after=not_after,
                failed_state=failed_state,
            )

        finally:
            if staged is not None:
                self.store.discard(staged)

    def _check_staged(self, staged: StagedCredential, not_after: datetime, now: datetime) -> datetime:
        """
        Sanity checks on the renewal output before asking the authority.

        Args:
            staged: Renewal output
            not_after: notAfter of the live certificate
            now: Reference time of this run

        Returns:
            notAfter of the staged certificate

        Raises:
            CertificateError: If the staged certificate cannot be decoded
            AuthorityError: If the key is missing or the new certificate does
                not outlive the live one
        """
        new_not_after = get_certificate_expiry(staged.cert_path)

        if not os.path.exists(staged.key_path) or os.path.getsize(staged.key_path) == 0:
            raise AuthorityError("Renewal produced no private key", operation="renew")

        if new_not_after <= not_after:
            raise AuthorityError(
                f"Renewed certificate expires {new_not_after.isoformat()}, "
                f"not later than the current one ({not_after.isoformat()})",
                operation="renew",
            )

        # Short-lived certificates can expire within the horizon right after renewal
        if is_expiring_soon(new_not_after, self.request.renew_before_days, now):
            self.logger.warning(
                f"{self._tag} Renewed certificate expires {new_not_after.isoformat()}, "
                f"still within the {self.request.renew_before_days}-day renewal horizon"
            )

        return new_not_after

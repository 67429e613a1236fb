"""
Certificate expiry evaluation.

Reads a PEM certificate from disk and decides whether it expires within
the renewal horizon. Reading, PEM decoding and X.509 parsing fail with
distinct errors so the caller can report what was wrong with the input.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Union

from cryptography import x509


_BEGIN_MARKER = b"-----BEGIN "
_END_MARKER = b"-----END "
_MARKER_TAIL = b"-----"


class CertificateError(Exception):
    """Base class for problems with the certificate being evaluated."""
    pass


class CertificateReadError(CertificateError):
    """Raised when the certificate file cannot be read."""
    pass


class CertificateDecodeError(CertificateError):
    """Raised when the file holds no complete PEM block."""
    pass


class CertificateParseError(CertificateError):
    """Raised when the PEM block is not a valid X.509 certificate."""
    pass


def _read_file(cert_path: str) -> bytes:
    try:
        with open(cert_path, "rb") as f:
            return f.read()
    except OSError as e:
        raise CertificateReadError(f"Failed to read certificate {cert_path}: {e}")


def extract_pem_block(data: bytes, source: str = "<data>") -> bytes:
    """
    Cut the first complete PEM block out of the data.

    Args:
        data: Raw file content
        source: Name used in error messages

    Returns:
        The block from its BEGIN line through its END line

    Raises:
        CertificateDecodeError: If there is no BEGIN line with a matching
            END line
    """
    start = data.find(_BEGIN_MARKER)
    label_end = data.find(_MARKER_TAIL, start + len(_BEGIN_MARKER)) if start != -1 else -1
    if label_end == -1:
        raise CertificateDecodeError(f"No PEM block found in {source}")

    label = data[start + len(_BEGIN_MARKER):label_end]
    end_marker = _END_MARKER + label + _MARKER_TAIL
    end = data.find(end_marker, label_end)
    if not label or b"\n" in label or end == -1:
        raise CertificateDecodeError(f"No complete PEM block found in {source}")

    return data[start:end + len(end_marker)]


def load_certificate(cert_path: str) -> x509.Certificate:
    """
    Load the first certificate from a PEM file.

    Args:
        cert_path: Path to the PEM certificate file

    Returns:
        Parsed certificate

    Raises:
        CertificateReadError: If the file cannot be read
        CertificateDecodeError: If the file holds no complete PEM block
        CertificateParseError: If the block is not a valid X.509 certificate
    """
    block = extract_pem_block(_read_file(cert_path), source=cert_path)
    try:
        return x509.load_pem_x509_certificate(block)
    except ValueError as e:
        raise CertificateParseError(f"Cannot parse certificate from {cert_path}: {e}")


def get_certificate_expiry(cert_path: str) -> datetime:
    """
    Extract the expiry date from a PEM certificate file.

    Args:
        cert_path: Path to the PEM certificate file

    Returns:
        Certificate expiry datetime (timezone-aware UTC)
    """
    return load_certificate(cert_path).not_valid_after_utc


def renewal_deadline(renew_before_days: int, now: Optional[datetime] = None) -> datetime:
    """Point in time by which the certificate must still be valid."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now + timedelta(days=renew_before_days)


def is_expiring_soon(
    expires_on: datetime,
    renew_before_days: int,
    now: Optional[datetime] = None,
) -> bool:
    """
    Check if an expiry date falls within the renewal horizon.

    Args:
        expires_on: Certificate expiration datetime
        renew_before_days: Renewal horizon in whole days
        now: Reference time, defaults to the current UTC time

    Returns:
        True if expires_on is at or before now + horizon
    """
    if expires_on.tzinfo is None:
        expires_on = expires_on.replace(tzinfo=timezone.utc)
    return expires_on <= renewal_deadline(renew_before_days, now)


def expires_soon(
    cert_path: str,
    renew_before_days: int,
    now: Optional[datetime] = None,
) -> bool:
    """
    Check if a certificate expires within the renewal horizon.

    Args:
        cert_path: Path to the PEM certificate file
        renew_before_days: Renewal horizon in whole days
        now: Reference time, defaults to the current UTC time

    Returns:
        True if the certificate will have expired by now + horizon

    Raises:
        CertificateReadError: If the file cannot be read
        CertificateDecodeError: If the file holds no valid PEM block
        CertificateParseError: If the block is not a valid X.509 certificate
    """
    return is_expiring_soon(get_certificate_expiry(cert_path), renew_before_days, now)


def format_days_remaining(
    expires_on: Optional[datetime],
    now: Optional[datetime] = None,
) -> Union[int, str]:
    """
    Calculate days remaining until expiration.

    Args:
        expires_on: Certificate expiration datetime
        now: Reference time, defaults to the current UTC time

    Returns:
        Number of days remaining (negative if expired), or "unknown"
    """
    if expires_on is None:
        return "unknown"

    if expires_on.tzinfo is None:
        expires_on = expires_on.replace(tzinfo=timezone.utc)

    if now is None:
        now = datetime.now(timezone.utc)

    return (expires_on - now).days

"""
Unit tests for renewer.expiry
"""

import base64
from datetime import timedelta
import pytest
from conftest import utcnow, write_credentials
from renewer.config_loader import RenewalRequest
from renewer.expiry import (CertificateDecodeError, CertificateError, CertificateParseError,
                            CertificateReadError, expires_soon, extract_pem_block,
                            format_days_remaining, get_certificate_expiry, is_expiring_soon,
                            load_certificate)


@pytest.fixture(name='cert_file')
def fixture_cert_file(tmp_path):
    """ Factory writing a certificate that expires at the given time """
    def make(not_after):
        path = str(tmp_path / 'as.pem')
        write_credentials(path, None, not_after)
        return path
    return make


def test_expires_within_horizon(cert_file):
    """ Horizon of 30 days with a certificate expiring in 10 days requires renewal """
    assert expires_soon(cert_file(utcnow() + timedelta(days=10)), 30)


def test_not_expiring_within_horizon(cert_file):
    """ Horizon of 30 days with a certificate expiring in 365 days requires nothing """
    assert not expires_soon(cert_file(utcnow() + timedelta(days=365)), 30)


def test_expired_certificate_expires_soon(cert_file):
    """ An already expired certificate is always due """
    assert expires_soon(cert_file(utcnow() - timedelta(days=1)), 0)


def test_boundary_is_due(cert_file):
    """ A certificate expiring exactly at now + horizon is due """
    now = utcnow()
    path = cert_file(now + timedelta(days=30))
    assert expires_soon(path, 30, now=now)
    assert not expires_soon(path, 30, now=now - timedelta(seconds=1))


def test_horizon_uses_whole_days(cert_file):
    """ Days are 24 hours long, not hours """
    now = utcnow()
    path = cert_file(now + timedelta(hours=30))
    assert expires_soon(path, 2, now=now)
    assert not expires_soon(path, 1, now=now)
    assert RenewalRequest('c', 'k', 't', 2).renew_before == timedelta(hours=48)


def test_naive_now_is_utc(cert_file):
    """ A naive reference time is treated as UTC """
    now = utcnow()
    path = cert_file(now + timedelta(days=5))
    assert expires_soon(path, 10, now=now.replace(tzinfo=None))


def test_get_certificate_expiry(cert_file):
    """ Expiry is the timezone-aware notAfter """
    not_after = utcnow() + timedelta(days=42)
    assert get_certificate_expiry(cert_file(not_after)) == not_after


def test_first_certificate_of_chain_is_used(tmp_path):
    """ Only the first PEM block counts, like the AS certificate of a chain file """
    first, second = str(tmp_path / 'first.pem'), str(tmp_path / 'second.pem')
    not_after = utcnow() + timedelta(days=3)
    write_credentials(first, None, not_after)
    write_credentials(second, None, utcnow() + timedelta(days=900))
    chain = tmp_path / 'chain.pem'
    chain.write_bytes((tmp_path / 'first.pem').read_bytes() + (tmp_path / 'second.pem').read_bytes())
    assert get_certificate_expiry(str(chain)) == not_after


def test_missing_file_is_read_error(tmp_path):
    """ Unreadable files raise a read error """
    with pytest.raises(CertificateReadError):
        expires_soon(str(tmp_path / 'missing.pem'), 30)


def test_directory_is_read_error(tmp_path):
    """ A directory is not a certificate file """
    with pytest.raises(CertificateReadError):
        expires_soon(str(tmp_path), 30)


@pytest.mark.parametrize('content', [
    b'',
    b'\x00\x01\x02 this is not PEM',
    b'-----BEGIN CERTIFICATE-----\nMIIBszCCAVmgAwIBAgIU\n',
    b'-----BEGIN CERTIFICATE-----\nMIIB\n-----END PRIVATE KEY-----\n',
], ids=['empty', 'binary', 'truncated', 'mismatched-end'])
def test_missing_pem_block_is_decode_error(tmp_path, content):
    """ Files without a complete PEM block raise a decode error """
    path = tmp_path / 'bad.pem'
    path.write_bytes(content)
    with pytest.raises(CertificateDecodeError):
        expires_soon(str(path), 30)


@pytest.mark.parametrize('content', [
    b'-----BEGIN CERTIFICATE-----\n!!not base64!!\n-----END CERTIFICATE-----\n',
    b'-----BEGIN CERTIFICATE-----\n-----END CERTIFICATE-----\n',
], ids=['bad-base64', 'empty-block'])
def test_broken_pem_block_is_certificate_error(tmp_path, content):
    """ A complete but broken block never crashes, it raises a certificate error """
    path = tmp_path / 'bad.pem'
    path.write_bytes(content)
    with pytest.raises(CertificateError):
        expires_soon(str(path), 30)


def test_malformed_der_is_parse_error(tmp_path):
    """ A valid PEM block without a certificate inside raises a parse error """
    body = base64.encodebytes(b'definitely not DER encoded X.509')
    path = tmp_path / 'bad.pem'
    path.write_bytes(b'-----BEGIN CERTIFICATE-----\n' + body + b'-----END CERTIFICATE-----\n')
    with pytest.raises(CertificateParseError):
        load_certificate(str(path))


def test_first_block_not_a_certificate_is_parse_error(tmp_path):
    """ Only the first block is considered, whatever its label """
    cert_path, key_path = str(tmp_path / 'as.pem'), str(tmp_path / 'as.key')
    write_credentials(cert_path, key_path, utcnow() + timedelta(days=3))
    bundle = tmp_path / 'bundle.pem'
    bundle.write_bytes((tmp_path / 'as.key').read_bytes() + (tmp_path / 'as.pem').read_bytes())
    with pytest.raises(CertificateParseError):
        load_certificate(str(bundle))


def test_extract_pem_block_ignores_surrounding_text():
    """ Text before and after the block is not part of it """
    block = b'-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----'
    assert extract_pem_block(b'Subject: AS 1-ff00:0:110\n' + block + b'\ntrailer\n') == block


def test_errors_share_base_class():
    """ Callers can catch every input problem at once """
    for error in (CertificateReadError, CertificateDecodeError, CertificateParseError):
        assert issubclass(error, CertificateError)


def test_is_expiring_soon_naive_expiry():
    """ A naive expiry date is treated as UTC """
    now = utcnow()
    assert is_expiring_soon((now + timedelta(days=1)).replace(tzinfo=None), 2, now=now)


def test_format_days_remaining():
    """ Days remaining are whole days, negative once expired """
    now = utcnow()
    assert format_days_remaining(now + timedelta(days=10, hours=1), now=now) == 10
    assert format_days_remaining(now - timedelta(hours=1), now=now) == -1
    assert format_days_remaining(None) == 'unknown'

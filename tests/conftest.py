"""
Shared fixtures for the renewer tests
"""

from datetime import datetime, timedelta, timezone
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from renewer.authority import AuthorityError, CredentialAuthority
from renewer.config_loader import Config, RenewalRequest, Settings
from renewer.logger import setup_logger

AS_NAME = '1-ff00:0:110 AS Certificate'


@pytest.fixture(autouse=True)
def fixture_logger():
    """ Fresh process logger for every test """
    return setup_logger(level='DEBUG', use_colors=False)


def utcnow():
    """ Current time, truncated to whole seconds like X.509 validity dates """
    return datetime.now(timezone.utc).replace(microsecond=0)


def write_credentials(cert_path, key_path, not_after, key=None):
    """ Writes a self-signed certificate expiring at not_after and its key """
    key = key or ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, AS_NAME)])
    certificate = x509.CertificateBuilder()\
        .subject_name(name)\
        .issuer_name(name)\
        .public_key(key.public_key())\
        .serial_number(x509.random_serial_number())\
        .not_valid_before(not_after - timedelta(days=400))\
        .not_valid_after(not_after)\
        .sign(key, hashes.SHA256())

    with open(cert_path, 'wb') as cert_file:
        cert_file.write(certificate.public_bytes(serialization.Encoding.PEM))
    if key_path is not None:
        with open(key_path, 'wb') as key_file:
            key_file.write(key.private_bytes(encoding=serialization.Encoding.PEM,
                                             format=serialization.PrivateFormat.PKCS8,
                                             encryption_algorithm=serialization.NoEncryption()))
    return certificate


def read_bytes(path):
    """ File content, for before/after comparisons """
    with open(path, 'rb') as file:
        return file.read()


class FakeAuthority(CredentialAuthority):
    """ In-process certificate authority recording every call """

    def __init__(self):
        self.calls = []
        self.new_lifetime = timedelta(days=365)
        self.renew_stderr = None
        self.validate_stderr = None
        self.verify_stderr = None

    def _fail(self, operation, stderr):
        raise AuthorityError(f'Failed to {operation} via fake-pki (exit code 1): {stderr}',
                             operation=operation, returncode=1, stderr=stderr)

    def renew(self, cert_path, key_path, trc_path, out_cert_path, out_key_path):
        self.calls.append(('renew', cert_path, key_path, trc_path, out_cert_path, out_key_path))
        if self.renew_stderr is not None:
            self._fail('renew', self.renew_stderr)
        write_credentials(out_cert_path, out_key_path, utcnow() + self.new_lifetime)

    def validate(self, cert_path):
        self.calls.append(('validate', cert_path))
        if self.validate_stderr is not None:
            self._fail('validate', self.validate_stderr)

    def verify(self, cert_path, trc_path):
        self.calls.append(('verify', cert_path, trc_path))
        if self.verify_stderr is not None:
            self._fail('verify', self.verify_stderr)

    def operations(self):
        """ Names of the operations called, in order """
        return [call[0] for call in self.calls]


@pytest.fixture(name='authority')
def fixture_authority():
    """ A fake certificate authority that succeeds unless told otherwise """
    return FakeAuthority()


@pytest.fixture(name='live_dir')
def fixture_live_dir(tmp_path):
    """ Directory holding the live certificate, key and TRC """
    directory = tmp_path / 'crypto'
    directory.mkdir()
    (directory / 'ISD1-B1-S1.trc').write_bytes(b'trc')
    return directory


@pytest.fixture(name='staging_dir')
def fixture_staging_dir(tmp_path):
    """ Empty directory used as the staging namespace """
    directory = tmp_path / 'staging'
    directory.mkdir()
    return directory


@pytest.fixture(name='credentials')
def fixture_credentials(live_dir):
    """ Factory writing the live pair with the given remaining lifetime """
    def make(expires_in):
        cert_path = str(live_dir / 'as.pem')
        key_path = str(live_dir / 'as.key')
        write_credentials(cert_path, key_path, utcnow() + expires_in)
        return cert_path, key_path
    return make


@pytest.fixture(name='make_config')
def fixture_make_config(live_dir, staging_dir):
    """ Factory for a configuration over the live pair """
    def make(cert_path, key_path, days=30, dry_run=False):
        request = RenewalRequest(cert_path=cert_path, key_path=key_path,
                                 trc_path=str(live_dir / 'ISD1-B1-S1.trc'), renew_before_days=days)
        return Config(request=request, settings=Settings(temp_dir=str(staging_dir), dry_run=dry_run))
    return make

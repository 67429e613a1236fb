"""
Certificate authority capability.

The renewal core talks to the certificate authority through the three
operations of CredentialAuthority: renew, validate and verify. The default
implementation wraps the scion-pki command line tool; any other
implementation of the same operations (library call, RPC) can be swapped in.
"""

import shutil
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional

from .logger import get_logger


DEFAULT_BINARY = "scion-pki"
DEFAULT_TIMEOUT = 300  # seconds


class AuthorityError(Exception):
    """Raised when a certificate authority operation fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.operation = operation
        self.returncode = returncode
        self.stderr = stderr


class CredentialAuthority(ABC):
    """ Renew, validate and verify operations of a certificate authority """

    @abstractmethod
    def renew(
        self,
        cert_path: str,
        key_path: str,
        trc_path: str,
        out_cert_path: str,
        out_key_path: str,
    ) -> None:
        """ Requests a fresh certificate and key written to the output paths """
        raise NotImplementedError

    @abstractmethod
    def validate(self, cert_path: str) -> None:
        """ Structurally checks a certificate chain """
        raise NotImplementedError

    @abstractmethod
    def verify(self, cert_path: str, trc_path: str) -> None:
        """ Verifies a certificate chain against the trust root """
        raise NotImplementedError


class ScionPKIAuthority(CredentialAuthority):
    """
    Certificate authority backed by the scion-pki command line tool.

    Every operation blocks until the tool exits or the timeout expires.
    On timeout the child process is killed and the operation fails.
    """

    def __init__(self, binary: str = DEFAULT_BINARY, timeout: float = DEFAULT_TIMEOUT):
        self.binary = binary
        self.timeout = timeout
        self.logger = get_logger()

    def renew(self, cert_path, key_path, trc_path, out_cert_path, out_key_path):
        self._execute(
            "renew",
            [
                "certificate", "renew", cert_path, key_path,
                "--out", out_cert_path,
                "--out-key", out_key_path,
                "--trc", trc_path,
            ],
        )

    def validate(self, cert_path):
        self._execute("validate", ["certificate", "validate", "--type", "chain", cert_path])

    def verify(self, cert_path, trc_path):
        self._execute("verify", ["certificate", "verify", "--trc", trc_path, cert_path])

    def _resolve_binary(self) -> str:
        """
        Check the authority tool is installed and return its path.

        Raises:
            AuthorityError: If the tool cannot be found
        """
        binary_path = shutil.which(self.binary)
        if not binary_path:
            raise AuthorityError(f"{self.binary} not found in PATH")
        return binary_path

    def _execute(self, operation: str, args: List[str]) -> subprocess.CompletedProcess:
        """
        Run one authority operation.

        Args:
            operation: Operation name used in log and error messages
            args: Arguments passed to the tool

        Returns:
            The completed process, stdout is for diagnostics only

        Raises:
            AuthorityError: On nonzero exit (message embeds stderr) or timeout
        """
        cmd = [self._resolve_binary()] + args
        self.logger.debug(f"Executing: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise AuthorityError(
                f"Failed to {operation} via {self.binary}: timed out after {self.timeout}s",
                operation=operation,
            )
        except OSError as e:
            raise AuthorityError(
                f"Failed to {operation} via {self.binary}: {e}",
                operation=operation,
            )

        if result.returncode != 0:
            stderr = result.stderr.strip()
            self.logger.debug(f"{self.binary} {operation} failed with exit code {result.returncode}")
            raise AuthorityError(
                f"Failed to {operation} via {self.binary} (exit code {result.returncode}): {stderr}",
                operation=operation,
                returncode=result.returncode,
                stderr=stderr,
            )

        self.logger.debug(f"{self.binary} {operation} successful")
        if result.stdout:
            self.logger.trace(result.stdout.rstrip())
        return result

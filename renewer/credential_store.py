"""
Certificate and private key files on disk.

Owns the live certificate/key pair: stages renewal output in a private
temporary directory, promotes a staged pair over the live files with one
atomic rename per file, and keeps backups of the live pair for the duration
of a commit so an interrupted commit can be repaired by the next run.

A commit in progress is recorded in a journal next to the live certificate
(``.<cert name>.renewer-commit``) naming the backups it made. Recovery only
ever touches files listed in a journal, never other files that happen to
sit next to the live pair.
"""

import json
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cryptography.hazmat.primitives import serialization

from .expiry import CertificateError, load_certificate
from .logger import get_logger


class FilesystemError(Exception):
    """Raised when staging or committing credential files fails."""
    pass


@dataclass(frozen=True)
class StagedCredential:
    """Renewal output waiting to be validated and committed."""
    directory: str
    cert_path: str
    key_path: str


def _hidden_sibling(path: str, suffix: str) -> str:
    directory, name = os.path.split(os.path.abspath(path))
    return os.path.join(directory, f".{name}{suffix}")


class CredentialStore:
    """ Live certificate and private key with staging, commit and rollback """

    BACKUP_SUFFIX = ".renewer-backup"
    JOURNAL_SUFFIX = ".renewer-commit"

    def __init__(self, cert_path: str, key_path: str, temp_dir: Optional[str] = None):
        self.cert_path = cert_path
        self.key_path = key_path
        self.temp_dir = temp_dir
        self.logger = get_logger()

    @property
    def cert_backup(self) -> str:
        """ Backup location of the live certificate during a commit """
        return _hidden_sibling(self.cert_path, CredentialStore.BACKUP_SUFFIX)

    @property
    def key_backup(self) -> str:
        """ Backup location of the live private key during a commit """
        return _hidden_sibling(self.key_path, CredentialStore.BACKUP_SUFFIX)

    @property
    def journal_path(self) -> str:
        """ Marker of a commit in progress, next to the live certificate """
        return _hidden_sibling(self.cert_path, CredentialStore.JOURNAL_SUFFIX)

    def stage(self) -> StagedCredential:
        """
        Allocate a certificate and a key file in a private temporary directory.

        Returns:
            The staged paths, distinct from the live paths

        Raises:
            FilesystemError: If the temporary files cannot be created
        """
        try:
            directory = tempfile.mkdtemp(prefix="cert-renewer-", dir=self.temp_dir)
        except OSError as e:
            raise FilesystemError(f"Failed to create staging directory: {e}")

        try:
            cert_fd, cert_path = tempfile.mkstemp(suffix=".crt", dir=directory)
            os.close(cert_fd)
            key_fd, key_path = tempfile.mkstemp(suffix=".key", dir=directory)
            os.close(key_fd)
        except OSError as e:
            shutil.rmtree(directory, ignore_errors=True)
            raise FilesystemError(f"Failed to create staging files in {directory}: {e}")

        return StagedCredential(directory=directory, cert_path=cert_path, key_path=key_path)

    def discard(self, staged: StagedCredential) -> None:
        """ Removes the staging directory and everything in it """
        try:
            shutil.rmtree(staged.directory)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to remove staging directory {staged.directory}: {e}")

    def commit(self, staged: StagedCredential) -> None:
        """
        Replace the live pair with the staged pair.

        Both files are first copied next to their destinations so that the
        final renames stay on one filesystem. The live pair is backed up and
        the journal written, then the certificate and the key are renamed
        into place in that order. If the key cannot be renamed the
        certificate is restored.

        Raises:
            FilesystemError: If the pair could not be replaced; the live
                pair is unchanged in that case
        """
        prepared = []
        try:
            cert_tmp = self._prepare(staged.cert_path, self.cert_path)
            prepared.append(cert_tmp)
            key_tmp = self._prepare(staged.key_path, self.key_path)
            prepared.append(key_tmp)
            shutil.copy2(self.cert_path, self.cert_backup)
            shutil.copy2(self.key_path, self.key_backup)
            self._write_journal(prepared)
        except OSError as e:
            self._remove_quietly(*prepared)
            self.delete_backup()
            raise FilesystemError(f"Failed to prepare credential commit: {e}")

        try:
            os.replace(cert_tmp, self.cert_path)
        except OSError as e:
            self._remove_quietly(cert_tmp, key_tmp)
            self.delete_backup()
            raise FilesystemError(f"Failed to replace certificate {self.cert_path}: {e}")

        try:
            os.replace(key_tmp, self.key_path)
        except OSError as e:
            self.logger.error(f"Failed to replace key {self.key_path}, restoring previous certificate")
            self._remove_quietly(key_tmp)
            self.rollback()
            raise FilesystemError(f"Failed to replace key {self.key_path}: {e}")

        self.delete_backup()

    def rollback(self, backups: Optional[Dict[str, Any]] = None) -> None:
        """
        Restore the live pair from the backups and delete the backups.

        Args:
            backups: Backup paths keyed by "cert" and "key", defaults to
                this store's backup locations

        Raises:
            FilesystemError: If a backup cannot be restored
        """
        backups = backups or self._backups()
        try:
            for backup, destination in ((backups["cert"], self.cert_path),
                                        (backups["key"], self.key_path)):
                os.replace(self._prepare(backup, destination), destination)
        except OSError as e:
            raise FilesystemError(f"Failed to restore credentials from backup: {e}")
        self.delete_backup(backups)

    def backup_exists(self) -> bool:
        """ Indicates whether a commit journal and both backups it names exist """
        backups = self._read_journal()
        return backups is not None and self._backups_present(backups)

    def delete_backup(self, backups: Optional[Dict[str, Any]] = None) -> None:
        """ Deletes the backup certificate and private key, then the journal """
        backups = backups or self._backups()
        self._remove_quietly(*backups.get("pending", []))
        self._remove_quietly(backups["cert"], backups["key"])
        self._remove_quietly(self.journal_path)

    def pair_matches(self) -> bool:
        """
        Check whether the live certificate belongs to the live private key.

        Returns:
            True if the certificate's public key is the key's public key,
            False if they differ or either file cannot be loaded
        """
        try:
            certificate = load_certificate(self.cert_path)
            with open(self.key_path, "rb") as key_file:
                private_key = serialization.load_pem_private_key(key_file.read(), password=None)
        except (CertificateError, OSError, ValueError, TypeError) as e:
            self.logger.debug(f"Could not compare certificate and key: {e}")
            return False

        def spki(public_key) -> bytes:
            return public_key.public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )

        return spki(certificate.public_key()) == spki(private_key.public_key())

    def recover(self, dry_run: bool = False) -> Optional[str]:
        """
        Repair a commit that an earlier run left unfinished.

        Only acts when a commit journal exists. The journal is written after
        both backups, and removed after them. With both backups present the
        live pair is kept when it is consistent (the commit finished, or had
        not renamed anything yet) and restored from the backups otherwise.
        A journal with a missing backup means the earlier run was already
        cleaning up, so the rest is removed.

        Args:
            dry_run: Only report what would be done

        Returns:
            "completed", "rolled back", "cleaned" or None when no journal
            was found
        """
        backups = self._read_journal()
        if backups is None:
            return None

        prefix = "DRY RUN - would recover" if dry_run else "Recovering"
        if self._backups_present(backups):
            if self.pair_matches():
                self.logger.warning(f"{prefix} interrupted commit: live pair is consistent, removing backups")
                action = "completed"
            else:
                self.logger.warning(f"{prefix} interrupted commit: live pair is inconsistent, restoring backups")
                action = "rolled back"
        else:
            self.logger.warning(f"{prefix} interrupted commit cleanup: removing journal and remaining backup")
            action = "cleaned"

        if dry_run:
            return action
        if action == "rolled back":
            self.rollback(backups)
        else:
            self.delete_backup(backups)
        return action

    def _backups(self) -> Dict[str, Any]:
        return {"cert": self.cert_backup, "key": self.key_backup}

    @staticmethod
    def _backups_present(backups: Dict[str, Any]) -> bool:
        return os.path.exists(backups["cert"]) and os.path.exists(backups["key"])

    def _write_journal(self, pending: List[str]) -> None:
        """ Atomically records the backups and temporary files of the commit about to start """
        directory = os.path.dirname(self.journal_path)
        fd, tmp_path = tempfile.mkstemp(prefix=".renewer-journal.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w") as journal:
                json.dump(dict(self._backups(), pending=pending), journal)
                journal.flush()
                os.fsync(journal.fileno())
            os.replace(tmp_path, self.journal_path)
        except OSError:
            self._remove_quietly(tmp_path)
            raise

    def _read_journal(self) -> Optional[Dict[str, Any]]:
        """ Backups and temporary files named by the commit journal, or None if there is none """
        try:
            with open(self.journal_path) as journal:
                entries = json.load(journal)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise FilesystemError(f"Unreadable commit journal {self.journal_path}: {e}")

        if not isinstance(entries, dict) or not all(
            isinstance(entries.get(name), str) for name in ("cert", "key")
        ):
            raise FilesystemError(f"Malformed commit journal {self.journal_path}")

        pending = entries.get("pending", [])
        if not isinstance(pending, list) or not all(isinstance(path, str) for path in pending):
            raise FilesystemError(f"Malformed commit journal {self.journal_path}")
        return {"cert": entries["cert"], "key": entries["key"], "pending": pending}

    def _prepare(self, source: str, destination: str) -> str:
        """ Copies source to a temporary file in the destination's directory """
        directory = os.path.dirname(os.path.abspath(destination))
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{os.path.basename(destination)}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "wb") as out_file, open(source, "rb") as in_file:
                shutil.copyfileobj(in_file, out_file)
                out_file.flush()
                os.fsync(out_file.fileno())
            if os.path.exists(destination):
                shutil.copymode(destination, tmp_path)
        except OSError:
            self._remove_quietly(tmp_path)
            raise
        return tmp_path

    def _remove_quietly(self, *paths: str) -> None:
        for path in paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                self.logger.warning(f"Failed to remove {path}: {e}")

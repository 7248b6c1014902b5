"""Encrypted, durable storage of the current session.

The session (credential, identity, expiry) is stored Fernet-encrypted in
``<session_dir>/session.enc`` with its key in ``<session_dir>/session.key``.
Both files are written atomically with 0600 permissions and are durable on
disk before ``set`` returns.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError as ModelValidationError

from .exceptions import CredentialStorageError
from .models import Identity, Session

logger = logging.getLogger(__name__)

SESSION_FILE_NAME = "session.enc"
KEY_FILE_NAME = "session.key"


class CredentialStore:
    """Persists the current session across process restarts."""

    def __init__(self, session_dir: Path):
        self.session_dir = Path(session_dir)
        self.session_file = self.session_dir / SESSION_FILE_NAME
        self.key_file = self.session_dir / KEY_FILE_NAME

    def _ensure_dir(self) -> None:
        self.session_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

    def _atomic_write(self, path: Path, data: bytes) -> None:
        """Write ``data`` to ``path`` via temp file + fsync + os.replace."""
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(temp_fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            os.chmod(temp_path, 0o600)
            os.replace(temp_path, path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def _load_or_create_key(self) -> bytes:
        if self.key_file.exists():
            return self.key_file.read_bytes()

        key = Fernet.generate_key()
        self._atomic_write(self.key_file, key)
        return key

    def set(
        self, credential: str, identity: Identity, expiry: Optional[int]
    ) -> Session:
        """Store a session, replacing any previous one.

        Raises:
            CredentialStorageError: If the session cannot be written
        """
        session = Session(
            credential=credential, identity=identity, expiry_epoch_seconds=expiry
        )
        payload = {
            "credential": credential,
            "identity": identity.model_dump(by_alias=True),
            "expiry": expiry,
        }

        try:
            self._ensure_dir()
            fernet = Fernet(self._load_or_create_key())
            encrypted = fernet.encrypt(json.dumps(payload).encode("utf-8"))
            self._atomic_write(self.session_file, encrypted)
        except OSError as e:
            raise CredentialStorageError(f"Failed to store session: {e}")

        return session

    def get(self) -> Optional[Session]:
        """Load the stored session, or None if there is none (or it is unreadable)."""
        if not self.session_file.exists() or not self.key_file.exists():
            return None

        try:
            fernet = Fernet(self.key_file.read_bytes())
            decrypted = fernet.decrypt(self.session_file.read_bytes())
            payload = json.loads(decrypted.decode("utf-8"))

            return Session(
                credential=payload["credential"],
                identity=Identity.model_validate(payload["identity"]),
                expiry_epoch_seconds=payload.get("expiry"),
            )
        except (InvalidToken, ValueError, KeyError, ModelValidationError) as e:
            logger.warning(f"Ignoring unreadable session file {self.session_file}: {e}")
            return None
        except OSError as e:
            logger.warning(f"Failed to read session file {self.session_file}: {e}")
            return None

    def clear(self) -> None:
        """Delete the stored session. Safe to call when nothing is stored.

        Raises:
            CredentialStorageError: If the session file cannot be removed
        """
        try:
            if self.session_file.exists():
                self.session_file.unlink()
        except OSError as e:
            raise CredentialStorageError(f"Failed to clear session: {e}")

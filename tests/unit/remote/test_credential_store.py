"""Tests for the encrypted credential store.

Uses a real temporary session directory, no mocks.
"""

import os
import stat

from cryptography.fernet import Fernet

from jobwatch.remote.credential_store import CredentialStore


class TestCredentialStore:
    def test_empty_store_returns_none(self, tmp_path):
        assert CredentialStore(tmp_path / "session").get() is None

    def test_set_then_get_survives_a_new_instance(self, tmp_path, identity):
        session_dir = tmp_path / "session"
        stored = CredentialStore(session_dir).set("token-1", identity, 1_700_000_000)

        restored = CredentialStore(session_dir).get()

        assert restored == stored
        assert restored.credential == "token-1"
        assert restored.identity == identity
        assert restored.expiry_epoch_seconds == 1_700_000_000

    def test_files_are_private_and_encrypted(self, tmp_path, identity):
        store = CredentialStore(tmp_path / "session")
        store.set("token-secret-value", identity, None)

        for path in (store.session_file, store.key_file):
            assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert b"token-secret-value" not in store.session_file.read_bytes()
        assert list(store.session_dir.glob("*.tmp")) == []

    def test_set_replaces_previous_session(self, tmp_path, identity):
        store = CredentialStore(tmp_path / "session")
        store.set("token-1", identity, 100)
        store.set("token-2", identity, 200)

        session = store.get()

        assert session.credential == "token-2"
        assert session.expiry_epoch_seconds == 200

    def test_clear_is_idempotent(self, tmp_path, identity):
        store = CredentialStore(tmp_path / "session")
        store.set("token-1", identity, None)

        store.clear()
        store.clear()

        assert store.get() is None

    def test_corrupt_file_reads_as_empty(self, tmp_path, identity):
        store = CredentialStore(tmp_path / "session")
        store.set("token-1", identity, None)
        store.session_file.write_bytes(b"garbage")

        assert store.get() is None

    def test_foreign_key_reads_as_empty(self, tmp_path, identity):
        store = CredentialStore(tmp_path / "session")
        store.set("token-1", identity, None)
        store.key_file.write_bytes(Fernet.generate_key())

        assert store.get() is None

    def test_masked_credential(self, tmp_path, identity):
        session = CredentialStore(tmp_path / "session").set(
            "abcdefgh1234", identity, None
        )

        assert session.masked_credential() == "****1234"

"""Tests for archive encryption and the key file."""

import base64
import os
import stat

import pytest

from repo_guard.archive.crypto import (
    HEADER_LEN, MAGIC, KeyStore, decrypt_file, encrypt_file, is_encrypted_archive, read_header,
    verify_file,
)
from repo_guard.core.errors import ArchiveKeyError, BackupEncryptionError


FAST = 1000


@pytest.fixture
def plaintext(tmp_path):
    path = tmp_path / "data.tar"
    path.write_bytes(os.urandom(3 * 1024 * 1024 + 17))
    return path


@pytest.fixture
def encrypted(tmp_path, plaintext):
    path = tmp_path / "data.tar.enc"
    encrypt_file(plaintext, path, "correct horse", iterations=FAST)
    return path


class TestEncryption:
    def test_round_trip(self, tmp_path, plaintext, encrypted):
        output = tmp_path / "out.tar"
        decrypt_file(encrypted, output, "correct horse")
        assert output.read_bytes() == plaintext.read_bytes()
        assert not (tmp_path / "out.tar.tmp").exists()

    def test_header(self, encrypted):
        assert is_encrypted_archive(encrypted)
        header = read_header(encrypted)
        assert header.iterations == FAST
        assert len(header.salt) == 16 and len(header.iv) == 16
        assert encrypted.read_bytes()[:len(MAGIC)] == MAGIC

    def test_wrong_key_leaves_no_output(self, tmp_path, encrypted):
        output = tmp_path / "out.tar"
        with pytest.raises(BackupEncryptionError, match="Wrong archive key"):
            decrypt_file(encrypted, output, "wrong key")
        assert not output.exists()
        assert not (tmp_path / "out.tar.tmp").exists()

    def test_tampered_ciphertext_is_detected(self, tmp_path, encrypted):
        data = bytearray(encrypted.read_bytes())
        data[HEADER_LEN + 100] ^= 0x01
        encrypted.write_bytes(bytes(data))
        with pytest.raises(BackupEncryptionError):
            verify_file(encrypted, "correct horse")

    def test_truncated_file(self, tmp_path, encrypted):
        encrypted.write_bytes(encrypted.read_bytes()[:HEADER_LEN + 10])
        with pytest.raises(BackupEncryptionError):
            verify_file(encrypted, "correct horse")

    def test_plain_file_is_rejected(self, plaintext):
        assert not is_encrypted_archive(plaintext)
        with pytest.raises(BackupEncryptionError, match="not an encrypted archive"):
            read_header(plaintext)

    def test_salt_differs_per_file(self, tmp_path, plaintext, encrypted):
        second = tmp_path / "again.enc"
        encrypt_file(plaintext, second, "correct horse", iterations=FAST)
        assert read_header(second).salt != read_header(encrypted).salt

    def test_empty_key_is_rejected(self, tmp_path, plaintext):
        with pytest.raises(BackupEncryptionError):
            encrypt_file(plaintext, tmp_path / "x.enc", "", iterations=FAST)


class TestKeyStore:
    def test_created_once_with_owner_only_mode(self, tmp_path, caplog):
        store = KeyStore(str(tmp_path / "keys" / "backup-key.txt"))
        with caplog.at_level("WARNING"):
            key = store.get_or_create()

        assert len(base64.b64decode(key)) == 32
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600
        assert "New archive encryption key" in caplog.text
        assert store.get_or_create() == key
        assert store.load() == key

    def test_existing_key_is_never_replaced(self, tmp_path):
        key_file = tmp_path / "backup-key.txt"
        key_file.write_text("existing-key\n")
        assert KeyStore(str(key_file)).get_or_create() == "existing-key"
        assert key_file.read_text() == "existing-key\n"

    def test_missing_key(self, tmp_path):
        with pytest.raises(ArchiveKeyError):
            KeyStore(str(tmp_path / "absent.txt")).load()

    def test_empty_key(self, tmp_path):
        key_file = tmp_path / "empty.txt"
        key_file.write_text("\n")
        with pytest.raises(ArchiveKeyError):
            KeyStore(str(key_file)).get_or_create()

    def test_info(self, tmp_path):
        store = KeyStore(str(tmp_path / "key.txt"))
        assert store.info()["exists"] is False
        store.get_or_create()
        assert store.info()["mode"] == "0o600"

"""Archive encryption and key management.

Encrypted file layout::

    [MAGIC(8)][VERSION(1)][SALT(16)][IV(16)][ITERATIONS(4)][CIPHERTEXT...][HMAC(32)]

AES-256-CTR encrypts the archive in a streaming fashion, HMAC-SHA256 over
header and ciphertext authenticates it, and both keys are derived from the
archive key with PBKDF2-HMAC-SHA256 at a fixed iteration count.
"""

import base64
import logging
import os
import secrets
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..core.errors import ArchiveKeyError, BackupEncryptionError


MAGIC = b"RGARCH01"
VERSION = 1
SALT_LEN = 16
IV_LEN = 16
HMAC_LEN = 32
HEADER_LEN = len(MAGIC) + 1 + SALT_LEN + IV_LEN + 4
KDF_ITERATIONS = 100000
CHUNK_SIZE = 1024 * 1024
KEY_BYTES = 32

DEFAULT_KEY_FILE = "~/.local/keys/backup-key.txt"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedHeader:
    salt: bytes
    iv: bytes
    iterations: int

    def pack(self) -> bytes:
        return MAGIC + bytes([VERSION]) + self.salt + self.iv + struct.pack(">I", self.iterations)


def _derive_keys(password: str, salt: bytes, iterations: int) -> Tuple[bytes, bytes]:
    if not password:
        raise BackupEncryptionError("Archive key is empty")
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=64, salt=salt, iterations=iterations)
    material = kdf.derive(password.encode("utf-8"))
    return material[:32], material[32:]


def read_header(path: Path) -> EncryptedHeader:
    """Read and validate the header of an encrypted archive.

    Raises:
        BackupEncryptionError: If the file is unreadable, truncated or not ours.
    """
    try:
        with open(path, "rb") as f:
            header = f.read(HEADER_LEN)
    except OSError as e:
        raise BackupEncryptionError(f"Cannot read archive header: {e}") from e

    if len(header) < HEADER_LEN:
        raise BackupEncryptionError("Archive is truncated (header)")
    if header[:len(MAGIC)] != MAGIC:
        raise BackupEncryptionError("File is not an encrypted archive")
    version = header[len(MAGIC)]
    if version != VERSION:
        raise BackupEncryptionError(f"Unsupported archive version: {version}")

    offset = len(MAGIC) + 1
    salt = header[offset:offset + SALT_LEN]
    offset += SALT_LEN
    iv = header[offset:offset + IV_LEN]
    offset += IV_LEN
    iterations = struct.unpack(">I", header[offset:offset + 4])[0]
    return EncryptedHeader(salt=salt, iv=iv, iterations=iterations)


def is_encrypted_archive(path: Path) -> bool:
    try:
        with open(path, "rb") as f:
            return f.read(len(MAGIC)) == MAGIC
    except OSError:
        return False


def encrypt_file(input_path: Path, output_path: Path, password: str,
                 iterations: int = KDF_ITERATIONS) -> None:
    """Encrypt ``input_path`` into ``output_path``.

    Raises:
        BackupEncryptionError: On any failure; a partial output file is removed.
    """
    header = EncryptedHeader(salt=os.urandom(SALT_LEN), iv=os.urandom(IV_LEN), iterations=iterations)
    enc_key, mac_key = _derive_keys(password, header.salt, iterations)
    encryptor = Cipher(algorithms.AES(enc_key), modes.CTR(header.iv)).encryptor()
    mac = hmac.HMAC(mac_key, hashes.SHA256())

    try:
        with open(input_path, "rb") as fin, open(output_path, "wb") as fout:
            packed = header.pack()
            mac.update(packed)
            fout.write(packed)
            for chunk in iter(lambda: fin.read(CHUNK_SIZE), b""):
                out = encryptor.update(chunk)
                mac.update(out)
                fout.write(out)
            final = encryptor.finalize()
            if final:
                mac.update(final)
                fout.write(final)
            fout.write(mac.finalize())
    except OSError as e:
        _unlink_quietly(output_path)
        raise BackupEncryptionError(f"Failed to encrypt {input_path.name}: {e}") from e


def _decrypt_stream(input_path: Path, password: str, sink: Optional[BinaryIO]) -> None:
    header = read_header(input_path)
    enc_key, mac_key = _derive_keys(password, header.salt, header.iterations)

    total_size = input_path.stat().st_size
    if total_size < HEADER_LEN + HMAC_LEN:
        raise BackupEncryptionError("Archive is truncated")

    decryptor = Cipher(algorithms.AES(enc_key), modes.CTR(header.iv)).decryptor()
    mac = hmac.HMAC(mac_key, hashes.SHA256())
    mac.update(header.pack())

    with open(input_path, "rb") as fin:
        fin.seek(HEADER_LEN)
        remaining = total_size - HEADER_LEN - HMAC_LEN
        while remaining > 0:
            chunk = fin.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                raise BackupEncryptionError("Archive is truncated (ciphertext)")
            remaining -= len(chunk)
            mac.update(chunk)
            out = decryptor.update(chunk)
            if sink is not None:
                sink.write(out)
        tag = fin.read(HMAC_LEN)

    try:
        mac.verify(tag)
    except InvalidSignature as e:
        raise BackupEncryptionError("Wrong archive key or corrupted archive") from e
    final = decryptor.finalize()
    if sink is not None and final:
        sink.write(final)


def decrypt_file(input_path: Path, output_path: Path, password: str) -> None:
    """Decrypt ``input_path`` into ``output_path``.

    Output is staged in ``<output>.tmp`` and only moved into place after the
    HMAC verified, so a wrong key never leaves decrypted bytes behind.
    """
    tmp_output = Path(str(output_path) + ".tmp")
    try:
        with open(tmp_output, "wb") as fout:
            _decrypt_stream(input_path, password, fout)
        tmp_output.replace(output_path)
    except BackupEncryptionError:
        _unlink_quietly(tmp_output)
        raise
    except OSError as e:
        _unlink_quietly(tmp_output)
        raise BackupEncryptionError(f"Failed to decrypt {input_path.name}: {e}") from e


def verify_file(input_path: Path, password: str) -> None:
    """Check that ``password`` opens the archive without writing any plaintext."""
    try:
        _decrypt_stream(input_path, password, None)
    except OSError as e:
        raise BackupEncryptionError(f"Failed to read {input_path.name}: {e}") from e


def _unlink_quietly(path: Path) -> None:
    try:
        if path.exists():
            path.unlink()
    except OSError as e:
        logger.error(f"Could not remove {path}: {e}")


class KeyStore:
    """The archive key file: base64 of 32 random bytes, owner-only, created once."""

    def __init__(self, key_file: str = DEFAULT_KEY_FILE):
        self.path = Path(key_file).expanduser()

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> str:
        """Return the key text.

        Raises:
            ArchiveKeyError: If the key file is missing, unreadable or empty.
        """
        try:
            key = self.path.read_text(encoding="ascii").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise ArchiveKeyError(f"Cannot read archive key {self.path}: {e}") from e
        if not key:
            raise ArchiveKeyError(f"Archive key file is empty: {self.path}")
        return key

    def get_or_create(self) -> str:
        """Return the key, generating it on first use. An existing key is never replaced."""
        if self.exists():
            return self.load()

        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        key = base64.b64encode(secrets.token_bytes(KEY_BYTES)).decode("ascii")
        try:
            fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            # Created concurrently by another run
            return self.load()
        except OSError as e:
            raise ArchiveKeyError(f"Cannot create archive key {self.path}: {e}") from e
        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(key + "\n")
        os.chmod(self.path, 0o600)

        logger.warning(f"IMPORTANT: New archive encryption key generated at {self.path}")
        logger.warning("Store this key securely. Archives cannot be decrypted without it.")
        return key

    def info(self) -> dict:
        data = {"path": str(self.path), "exists": self.exists(), "mode": None}
        if data["exists"]:
            data["mode"] = oct(self.path.stat().st_mode & 0o777)
        return data

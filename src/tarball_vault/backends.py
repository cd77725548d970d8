"""Adapters for the external collaborators: archive lister, cipher, digest.

Every collaborator comes in two flavours:

* a *process* adapter that shells out to the system tool (``tar``, ``gpg``,
  ``shasum``/``sha256sum``), which is what the command-line tools use;
* an *in-process* adapter built on :mod:`tarfile` and ``cryptography``,
  usable wherever the system tools are missing (and by the test suite).

Adapters report failure through their return values (``False`` or an empty
digest); turning that into an exception is the caller's job.

In-process Cipher Format (v1)
-----------------------------
Header::

    [2 B]  magic 0xEF02
    [1 B]  format version 0x01
    [2 B]  salt length          [N B]  salt
    [2 B]  base-nonce length    [12 B] base nonce

Chunks::

    [4 B]  ciphertext length    [N B]  ciphertext (plaintext + 16 B GCM tag)

* Nonce per chunk: ``base_nonce XOR chunk_index`` (12 bytes, big-endian).
* AAD per chunk: ``b"chunk_<index>"``, ``b"chunk_<index>_final"`` for the last.
"""

from __future__ import annotations

import enum
import os
import shutil
import subprocess
import sys
import tarfile
import zlib
from getpass import getpass
from secrets import token_bytes
from typing import Any, BinaryIO, Callable, Iterator, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

# ── Constants ────────────────────────────────────────────────────────────────

CIPHER_ALGO = "AES256"

MAGIC = b"\xef\x02"
FORMAT_VERSION = 1

NONCE_SIZE = 12    # AES-GCM standard nonce size in bytes
SALT_SIZE = 16     # PBKDF2 salt size in bytes

DEFAULT_CHUNK_SIZE = 2**20  # 1 MiB
DEFAULT_KDF_ITERATIONS = 1_200_000

# Preference order: shasum first, sha256sum as the fallback.
DIGEST_TOOLS: tuple[tuple[str, ...], ...] = (
    ("shasum", "-a", "256"),
    ("sha256sum",),
)


# ── Archive formats ──────────────────────────────────────────────────────────

class ArchiveFormat(enum.Enum):
    """Supported tarball flavours, keyed by filename suffix."""

    TAR = ("uncompressed", (".tar",), "-tf", "r:")
    GZIP = ("gzip", (".tar.gz", ".tgz"), "-tzf", "r:gz")
    BZIP2 = ("bzip2", (".tar.bz2", ".tbz2"), "-tjf", "r:bz2")

    def __init__(
        self,
        label: str,
        suffixes: tuple[str, ...],
        tar_flag: str,
        tarfile_mode: str,
    ) -> None:
        self.label = label
        self.suffixes = suffixes
        self.tar_flag = tar_flag
        self.tarfile_mode = tarfile_mode

    @classmethod
    def for_path(cls, path: str) -> ArchiveFormat | None:
        """Return the format matching *path*'s suffix, or ``None``."""
        for fmt in (cls.GZIP, cls.BZIP2, cls.TAR):
            if path.endswith(fmt.suffixes):
                return fmt
        return None

    @classmethod
    def supported_suffixes(cls) -> list[str]:
        return [s for fmt in cls for s in fmt.suffixes]


# ── Ports ────────────────────────────────────────────────────────────────────

class ArchiveLister(Protocol):
    """Proves an archive is well-formed by listing it without extraction."""

    name: str

    def available(self) -> bool: ...

    def verify(self, path: str, fmt: ArchiveFormat) -> bool: ...


class SymmetricCipher(Protocol):
    """Passphrase-based symmetric encryption of whole files.

    ``password_file=None`` means the passphrase is prompted for interactively.
    """

    name: str

    def available(self) -> bool: ...

    def encrypt(self, src: str, dst: str, password_file: str | None) -> bool: ...

    def decrypt(self, src: str, dst: str, password_file: str | None) -> bool: ...


class Digest(Protocol):
    """SHA-256 of a file as lowercase hex, or ``""`` when none was produced."""

    name: str

    def available(self) -> bool: ...

    def sha256(self, path: str) -> str: ...


# ── Process adapters ─────────────────────────────────────────────────────────

def _run(cmd: list[str], **kwargs: Any) -> int:
    """Run *cmd* and return its exit status; a missing binary counts as 127."""
    try:
        return subprocess.run(cmd, check=False, **kwargs).returncode
    except OSError:
        return 127


class TarLister:
    """``tar -t[z|j]f <archive>`` with all output discarded."""

    name = "tar"

    def __init__(self, which: Callable[[str], str | None] = shutil.which) -> None:
        self._which = which

    def available(self) -> bool:
        return self._which("tar") is not None

    def verify(self, path: str, fmt: ArchiveFormat) -> bool:
        status = _run(
            ["tar", fmt.tar_flag, path],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        return status == 0


class GpgCipher:
    """GnuPG symmetric mode with AES-256.

    With a password file gpg runs in batch mode (``--batch --yes``);
    otherwise it is left attached to the terminal so that it can prompt.
    """

    name = "gpg"

    def __init__(
        self,
        binary: str = "gpg",
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.binary = binary
        self._which = which

    def available(self) -> bool:
        return self._which(self.binary) is not None

    def _base_args(self, password_file: str | None) -> list[str]:
        if password_file is None:
            return [self.binary]
        return [self.binary, "--batch", "--yes", "--passphrase-file", password_file]

    def encrypt_command(
        self, src: str, dst: str, password_file: str | None
    ) -> list[str]:
        return self._base_args(password_file) + [
            "--symmetric", "--cipher-algo", CIPHER_ALGO, "--output", dst, src,
        ]

    def decrypt_command(
        self, src: str, dst: str, password_file: str | None
    ) -> list[str]:
        return self._base_args(password_file) + ["--decrypt", "--output", dst, src]

    def encrypt(self, src: str, dst: str, password_file: str | None) -> bool:
        cmd = self.encrypt_command(src, dst, password_file)
        return _run(cmd) == 0

    def decrypt(self, src: str, dst: str, password_file: str | None) -> bool:
        cmd = self.decrypt_command(src, dst, password_file)
        return _run(cmd) == 0


class ShaToolDigest:
    """Hash with ``shasum -a 256``, falling back to ``sha256sum``."""

    name = "shasum/sha256sum"

    def __init__(self, which: Callable[[str], str | None] = shutil.which) -> None:
        self._which = which

    def _command(self) -> tuple[str, ...] | None:
        for cmd in DIGEST_TOOLS:
            if self._which(cmd[0]) is not None:
                return cmd
        return None

    def available(self) -> bool:
        return self._command() is not None

    def sha256(self, path: str) -> str:
        cmd = self._command()
        if cmd is None:
            return ""
        try:
            result = subprocess.run(
                [*cmd, path], capture_output=True, text=True, check=False
            )
        except OSError:
            return ""
        if result.returncode != 0:
            return ""
        fields = result.stdout.split()
        return fields[0] if fields else ""


# ── In-process adapters ──────────────────────────────────────────────────────

class TarfileLister:
    """Walk every member header with :mod:`tarfile` in the suffix's mode."""

    name = "tarfile"

    def available(self) -> bool:
        return True

    def verify(self, path: str, fmt: ArchiveFormat) -> bool:
        try:
            with tarfile.open(path, fmt.tarfile_mode) as tar:
                for _ in tar:
                    pass
        except (tarfile.TarError, OSError, EOFError, zlib.error):
            return False
        return True


class CryptographyDigest:
    """Streaming SHA-256 via ``cryptography``."""

    name = "cryptography"

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.chunk_size = chunk_size

    def available(self) -> bool:
        return True

    def sha256(self, path: str) -> str:
        h = hashes.Hash(hashes.SHA256())
        with open(path, "rb") as f:
            while data := f.read(self.chunk_size):
                h.update(data)
        return h.finalize().hex()


def derive_key(
    password: str,
    salt: bytes,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> bytes:
    """Derive a 256-bit key from *password* using PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def _make_nonce(base_nonce: bytes, chunk_index: int) -> bytes:
    """Return ``base_nonce XOR chunk_index`` as a 12-byte nonce."""
    index_bytes = chunk_index.to_bytes(NONCE_SIZE, "big")
    return bytes(a ^ b for a, b in zip(base_nonce, index_bytes))


def _write_header(f: BinaryIO, salt: bytes, base_nonce: bytes) -> None:
    f.write(MAGIC)
    f.write(FORMAT_VERSION.to_bytes(1, "big"))
    f.write(len(salt).to_bytes(2, "big") + salt)
    f.write(len(base_nonce).to_bytes(2, "big") + base_nonce)


def _read_header(f: BinaryIO) -> tuple[bytes, bytes]:
    """Read and validate the header, returning ``(salt, base_nonce)``.

    Raises
    ------
    ValueError
        If the header is missing, truncated, or has an unsupported version.
    """
    if f.read(2) != MAGIC:
        raise ValueError("Invalid file: missing magic number.")

    version = int.from_bytes(f.read(1), "big")
    if version != FORMAT_VERSION:
        raise ValueError(
            f"Unsupported format version {version} (expected {FORMAT_VERSION})."
        )

    salt_len = int.from_bytes(f.read(2), "big")
    salt = f.read(salt_len)
    if len(salt) != salt_len:
        raise ValueError("Truncated header: incomplete salt.")

    nonce_len = int.from_bytes(f.read(2), "big")
    base_nonce = f.read(nonce_len)
    if len(base_nonce) != nonce_len:
        raise ValueError("Truncated header: incomplete nonce.")

    return salt, base_nonce


def _read_chunks(f: BinaryIO) -> Iterator[bytes]:
    """Yield length-prefixed ciphertext chunks until end of file."""
    while length_bytes := f.read(4):
        if len(length_bytes) < 4:
            raise ValueError("Truncated chunk: incomplete length prefix.")
        chunk_len = int.from_bytes(length_bytes, "big")
        data = f.read(chunk_len)
        if len(data) != chunk_len:
            raise ValueError(
                f"Truncated chunk: expected {chunk_len} bytes, got {len(data)}."
            )
        yield data


def read_passphrase_file(path: str) -> str:
    """Return the first line of *path*, as ``gpg --passphrase-file`` does."""
    with open(path, encoding="utf-8") as f:
        return f.readline().rstrip("\r\n")


def _prompt_password(confirm: bool = False) -> str | None:
    """Prompt interactively for a password (hidden input)."""
    pw = getpass("Passphrase: ")
    if not pw:
        print("Error: password cannot be empty.", file=sys.stderr)
        return None
    if confirm and getpass("Repeat passphrase: ") != pw:
        print("Error: passwords do not match.", file=sys.stderr)
        return None
    return pw


def _chunk_aad(index: int, final: bool) -> bytes:
    return f"chunk_{index}_final".encode() if final else f"chunk_{index}".encode()


class AesGcmCipher:
    """AES-256-GCM with PBKDF2-HMAC-SHA256 keys, chunked.

    The last chunk is always written (empty for empty input) and carries
    the final AAD, so dropping or appending whole chunks fails to decrypt.

    Not wire-compatible with GnuPG: files written here can only be read back
    by this class.
    """

    name = "aes-256-gcm"

    def __init__(
        self,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        iterations: int = DEFAULT_KDF_ITERATIONS,
        prompt: Callable[[bool], str | None] = _prompt_password,
    ) -> None:
        self.chunk_size = chunk_size
        self.iterations = iterations
        self._prompt = prompt

    def available(self) -> bool:
        return True

    def _passphrase(self, password_file: str | None, confirm: bool) -> str | None:
        if password_file is not None:
            return read_passphrase_file(password_file)
        return self._prompt(confirm)

    def encrypt(self, src: str, dst: str, password_file: str | None) -> bool:
        password = self._passphrase(password_file, confirm=True)
        if password is None:
            return False

        salt = token_bytes(SALT_SIZE)
        aesgcm = AESGCM(derive_key(password, salt, self.iterations))
        base_nonce = token_bytes(NONCE_SIZE)

        with open(src, "rb") as f, open(dst, "wb") as out:
            _write_header(out, salt, base_nonce)
            idx = 0
            data = f.read(self.chunk_size)
            while True:
                following = f.read(self.chunk_size)
                final = not following
                nonce = _make_nonce(base_nonce, idx)
                ciphertext = aesgcm.encrypt(nonce, data, _chunk_aad(idx, final))
                out.write(len(ciphertext).to_bytes(4, "big") + ciphertext)
                if final:
                    break
                data = following
                idx += 1
        return True

    def decrypt(self, src: str, dst: str, password_file: str | None) -> bool:
        password = self._passphrase(password_file, confirm=False)
        if password is None:
            return False

        try:
            with open(src, "rb") as f, open(dst, "wb") as out:
                salt, base_nonce = _read_header(f)
                aesgcm = AESGCM(derive_key(password, salt, self.iterations))
                pending: bytes | None = None
                idx = -1
                for idx, ciphertext in enumerate(_read_chunks(f)):
                    if pending is not None:
                        nonce = _make_nonce(base_nonce, idx - 1)
                        out.write(
                            aesgcm.decrypt(nonce, pending, _chunk_aad(idx - 1, False))
                        )
                    pending = ciphertext
                if pending is None:
                    raise ValueError("Truncated file: no chunks.")
                nonce = _make_nonce(base_nonce, idx)
                out.write(aesgcm.decrypt(nonce, pending, _chunk_aad(idx, True)))
        except Exception as exc:
            # Remove partial output on failure
            if os.path.isfile(dst):
                os.remove(dst)
            if isinstance(exc, (ValueError, InvalidTag, OSError)):
                return False
            raise
        return True

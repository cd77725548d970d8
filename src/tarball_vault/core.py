"""GPG-encrypted tarballs with SHA-256 sidecars.

Encrypt a validated tarball to ``<archive>.gpg`` and record the plaintext's
SHA-256 in ``<archive>.gpg.sha256``; decrypt it back and optionally re-check
the hash against that sidecar.

The external tools (``tar``, ``gpg``, ``shasum``/``sha256sum``) are reached
through the adapters in :mod:`tarball_vault.backends`, and overwrite prompts
through a *confirm* callback, so that both can be swapped out by callers.

Examples
--------
::

    >>> opts = EncryptOptions("data.tar.gz", password_file="secret.txt")
    >>> encrypt_tarball(opts)
    EncryptResult(ciphertext_path='data.tar.gz.gpg', ...)

    >>> opts = DecryptOptions("data.tar.gz.gpg", password_file="secret.txt",
    ...                       verify_hash=True)
    >>> decrypt_tarball(opts)
    DecryptResult(output_path='data.tar.gz', ...)
"""

from __future__ import annotations

import os
import stat
import sys
from dataclasses import dataclass
from typing import Callable

from colorama import Fore, Style

from tarball_vault.backends import (ArchiveFormat, ArchiveLister, Digest,
                                    GpgCipher, ShaToolDigest, SymmetricCipher,
                                    TarLister)

# ── Constants ────────────────────────────────────────────────────────────────

CIPHERTEXT_SUFFIX = ".gpg"
SIDECAR_SUFFIX = ".sha256"
DECRYPTED_SUFFIX = ".decrypted"
RECOMMENDED_PASSWORD_MODES = ("400", "600")

GPG_INSTALL_HINTS = (
    "  macOS: brew install gnupg",
    "  Linux: sudo apt-get install gnupg (Debian/Ubuntu) "
    "or sudo yum install gnupg (RHEL/CentOS)",
)


# ── Errors ───────────────────────────────────────────────────────────────────

class VaultError(Exception):
    """Base class for every failure that aborts an encrypt/decrypt run.

    *details* are extra lines printed under the error message; *notes* are
    printed after them as info lines.
    """

    def __init__(
        self,
        message: str,
        details: tuple[str, ...] = (),
        notes: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.details = details
        self.notes = notes


class ConfigurationError(VaultError):
    """Password file missing or unreadable."""


class DependencyError(VaultError):
    """A required external tool is not installed."""


class InputError(VaultError):
    """Input file missing or not a regular file."""


class UnsupportedFormatError(InputError):
    pass


class IntegrityError(VaultError):
    """Archive failed its listing check."""


class HashMismatchError(IntegrityError):
    def __init__(self, message: str, expected: str, calculated: str) -> None:
        super().__init__(
            message,
            (f"  Expected: {expected}", f"  Calculated: {calculated}"),
        )
        self.expected = expected
        self.calculated = calculated


class DigestError(VaultError):
    pass


class SidecarError(VaultError):
    pass


class ToolError(VaultError):
    """The cipher tool exited unsuccessfully (e.g. wrong passphrase)."""


# ── Status output ────────────────────────────────────────────────────────────

def _log(msg: str) -> None:
    """Print a status line to stderr."""
    print(msg, file=sys.stderr)


def print_success(msg: str) -> None:
    _log(f"{Fore.GREEN}✓ {msg}{Style.RESET_ALL}")


def print_error(msg: str) -> None:
    _log(f"{Fore.RED}✗ {msg}{Style.RESET_ALL}")


def print_info(msg: str) -> None:
    _log(f"{Fore.YELLOW}ℹ {msg}{Style.RESET_ALL}")


# ── Options and results ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class EncryptOptions:
    archive_path: str
    expected_sha256: str | None = None
    password_file: str | None = None


@dataclass(frozen=True)
class DecryptOptions:
    encrypted_path: str
    output_path: str | None = None
    password_file: str | None = None
    verify_hash: bool = False


@dataclass(frozen=True)
class EncryptResult:
    ciphertext_path: str
    sidecar_path: str
    sha256: str


@dataclass(frozen=True)
class DecryptResult:
    output_path: str
    expected_sha256: str | None = None
    calculated_sha256: str | None = None


# ── Overwrite confirmation ───────────────────────────────────────────────────

Confirm = Callable[[str], bool]


def prompt_overwrite(path: str) -> bool:
    """Ask on stdin whether *path* may be overwritten.

    Only a reply starting with ``y`` or ``Y`` accepts; EOF declines.
    """
    print_info(f"Output file already exists: {path}")
    try:
        reply = input("Do you want to overwrite it? (y/N): ")
    except EOFError:
        return False
    return reply[:1] in ("y", "Y")


def always_yes(path: str) -> bool:
    return True


def always_no(path: str) -> bool:
    return False


# ── Validation helpers ───────────────────────────────────────────────────────

def check_password_file(path: str, *, warn_permissions: bool = False) -> None:
    """Require *path* to be a readable file.

    With *warn_permissions*, print a warning (never fail) when the mode is
    not one of :data:`RECOMMENDED_PASSWORD_MODES`.

    Raises
    ------
    ConfigurationError
        If the file is missing or unreadable.
    """
    if not os.path.isfile(path):
        raise ConfigurationError(f"Password file not found: {path}")
    if not os.access(path, os.R_OK):
        raise ConfigurationError(f"Password file is not readable: {path}")
    if warn_permissions:
        mode = f"{stat.S_IMODE(os.stat(path).st_mode):o}"
        if mode not in RECOMMENDED_PASSWORD_MODES:
            print_info(
                f"Warning: Password file permissions are {mode} "
                "(recommend 400 or 600)"
            )


def check_dependencies(
    cipher: SymmetricCipher, digest: Digest | None = None
) -> None:
    if not cipher.available():
        raise DependencyError(
            f"{cipher.name} is not installed. Please install it first.",
            GPG_INSTALL_HINTS if isinstance(cipher, GpgCipher) else (),
        )
    if digest is not None and not digest.available():
        raise DependencyError(f"No SHA-256 tool is available ({digest.name}).")


def _require_file(path: str) -> None:
    if not os.path.isfile(path):
        raise InputError(f"File not found: {path}")


def verify_tarball(path: str, lister: ArchiveLister) -> ArchiveFormat:
    """Dispatch on *path*'s suffix and list the archive without extracting.

    Raises
    ------
    UnsupportedFormatError
        If the suffix is not a known tarball suffix.
    IntegrityError
        If the listing fails.
    """
    fmt = ArchiveFormat.for_path(path)
    if fmt is None:
        raise UnsupportedFormatError(
            "Unsupported file format. Supported formats: "
            + ", ".join(ArchiveFormat.supported_suffixes())
        )
    print_info("Verifying tarball integrity...")
    if not lister.verify(path, fmt):
        raise IntegrityError("Tarball integrity check failed")
    print_success(f"Tarball integrity verified ({fmt.label})")
    return fmt


def calculate_sha256(path: str, digest: Digest) -> str:
    value = digest.sha256(path)
    if not value:
        raise DigestError("Failed to calculate SHA-256 hash")
    return value


# ── Sidecar files ────────────────────────────────────────────────────────────

def sidecar_path(ciphertext_path: str) -> str:
    return ciphertext_path + SIDECAR_SUFFIX


def write_sidecar(path: str, sha256: str, name: str) -> None:
    """Write ``<sha256>  <name>`` to *path*, replacing any existing file."""
    with open(path, "w", encoding="utf-8") as f:
        f.write(f"{sha256}  {name}\n")


def read_sidecar(path: str) -> str:
    """Return the first whitespace-delimited token of *path*'s first line."""
    with open(path, encoding="utf-8", errors="replace") as f:
        fields = f.readline().split()
    return fields[0] if fields else ""


def default_output_path(encrypted_path: str) -> str:
    """``x.gpg`` → ``x``; anything else gets ``.decrypted`` appended."""
    if encrypted_path.endswith(CIPHERTEXT_SUFFIX):
        return encrypted_path[: -len(CIPHERTEXT_SUFFIX)]
    return encrypted_path + DECRYPTED_SUFFIX


# ── Encryption ───────────────────────────────────────────────────────────────

def encrypt_tarball(
    options: EncryptOptions,
    *,
    lister: ArchiveLister | None = None,
    cipher: SymmetricCipher | None = None,
    digest: Digest | None = None,
    confirm: Confirm = prompt_overwrite,
) -> EncryptResult | None:
    """Verify, hash and encrypt a tarball, then write its hash sidecar.

    Parameters
    ----------
    options : EncryptOptions
        Archive path, optional expected hash and optional password file.
    lister, cipher, digest
        Collaborators; default to ``tar``, ``gpg`` and ``shasum``/``sha256sum``.
    confirm : Confirm
        Called with the ciphertext path when it already exists.

    Returns
    -------
    EncryptResult | None
        ``None`` when the overwrite was declined.

    Raises
    ------
    VaultError
        Any failed step; nothing is retried.
    """
    lister = lister or TarLister()
    cipher = cipher or GpgCipher()
    digest = digest or ShaToolDigest()
    archive = options.archive_path

    if options.password_file:
        check_password_file(options.password_file, warn_permissions=True)

    check_dependencies(cipher, digest)
    _require_file(archive)

    print_info(f"Processing file: {archive}")
    verify_tarball(archive, lister)

    print_info("Calculating SHA-256 hash...")
    calculated = calculate_sha256(archive, digest)
    print(f"SHA-256: {calculated}")

    if options.expected_sha256:
        print_info("Verifying SHA-256 hash...")
        if calculated != options.expected_sha256:
            raise HashMismatchError(
                "SHA-256 hash verification failed",
                options.expected_sha256,
                calculated,
            )
        print_success("SHA-256 hash verification passed")

    output = archive + CIPHERTEXT_SUFFIX
    if os.path.isfile(output) and not confirm(output):
        print_info("Encryption cancelled")
        return None

    print_info(f"Encrypting file to: {output}")
    if options.password_file:
        print_info(f"Using password from file: {options.password_file}")
    else:
        print_info("You will be prompted to enter a passphrase")
    if not cipher.encrypt(archive, output, options.password_file or None):
        raise ToolError("Encryption failed")
    print_success("File encrypted successfully")

    print_info(f"Encrypted file: {output}")
    print_info(f"Original SHA-256: {calculated}")
    hash_file = sidecar_path(output)
    write_sidecar(hash_file, calculated, archive)
    print_success(f"SHA-256 hash saved to: {hash_file}")

    return EncryptResult(output, hash_file, calculated)


# ── Decryption ───────────────────────────────────────────────────────────────

def decrypt_tarball(
    options: DecryptOptions,
    *,
    cipher: SymmetricCipher | None = None,
    digest: Digest | None = None,
    confirm: Confirm = prompt_overwrite,
) -> DecryptResult | None:
    """Decrypt a ciphertext and optionally check it against its sidecar.

    On a hash mismatch the decrypted file is left in place and
    :class:`HashMismatchError` is raised.

    Returns
    -------
    DecryptResult | None
        ``None`` when the overwrite was declined.
    """
    cipher = cipher or GpgCipher()
    digest = digest or ShaToolDigest()
    encrypted = options.encrypted_path

    if options.password_file:
        check_password_file(options.password_file)

    check_dependencies(cipher)
    _require_file(encrypted)

    output = options.output_path or default_output_path(encrypted)

    print_info(f"Processing encrypted file: {encrypted}")
    if os.path.isfile(output) and not confirm(output):
        print_info("Decryption cancelled")
        return None

    print_info(f"Decrypting file to: {output}")
    if options.password_file:
        print_info(f"Using password from file: {options.password_file}")
    else:
        print_info("You will be prompted to enter the passphrase")
    if not cipher.decrypt(encrypted, output, options.password_file or None):
        raise ToolError("Decryption failed")
    print_success("File decrypted successfully")
    print_info(f"Decrypted file: {output}")

    if not options.verify_hash:
        print_info("Tip: Use --verify-hash to verify file integrity after decryption")
        return DecryptResult(output)

    hash_file = sidecar_path(encrypted)
    if not os.path.isfile(hash_file):
        raise SidecarError(
            f"Hash file not found: {hash_file}",
            notes=("Cannot verify integrity without hash file",),
        )

    print_info("Verifying SHA-256 hash...")
    expected = read_sidecar(hash_file)
    calculated = calculate_sha256(output, digest)
    print(f"Expected SHA-256:   {expected}")
    print(f"Calculated SHA-256: {calculated}")

    if calculated != expected:
        raise HashMismatchError(
            "SHA-256 hash verification failed - file may be corrupted",
            expected,
            calculated,
        )
    print_success("SHA-256 hash verification passed - file integrity confirmed")
    return DecryptResult(output, expected, calculated)

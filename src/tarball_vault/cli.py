"""Command-line entry points: ``tarball-encrypt`` and ``tarball-decrypt``.

Examples
--------
Encrypt, printing the archive's SHA-256::

    $ tarball-encrypt backup.tar.gz

Encrypt unattended, checking a known hash first::

    $ tarball-encrypt backup.tar.gz a1b2c3d4... --password-file /run/secrets/gpg_password

Decrypt and re-check the hash from ``backup.tar.gz.gpg.sha256``::

    $ tarball-decrypt backup.tar.gz.gpg --password-file /run/secrets/gpg_password --verify-hash
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, NoReturn, Sequence

import colorama

from tarball_vault import __version__
from tarball_vault.core import (DecryptOptions, EncryptOptions, VaultError,
                                decrypt_tarball, encrypt_tarball, print_error,
                                print_info)


class _ArgumentParser(argparse.ArgumentParser):
    """Usage errors print the full help and exit 1."""

    def error(self, message: str) -> NoReturn:
        print_error(message)
        self.print_help(sys.stderr)
        self.exit(1)


def _add_version(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )


def _add_password_file(parser: argparse.ArgumentParser, verb: str) -> None:
    parser.add_argument(
        "--password-file",
        default=None,
        metavar="FILE",
        help=f"File containing the {verb} password (for automated/Docker use). "
        "GPG prompts interactively if omitted.",
    )


# ── Argument parsers ─────────────────────────────────────────────────────────

def build_encrypt_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="tarball-encrypt",
        allow_abbrev=False,
        description=(
            "Encrypt a tar/tar.gz/tar.bz2 file to <file>.gpg (AES-256) and "
            "save its SHA-256 to <file>.gpg.sha256."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "If sha256_hash is not provided, the hash is generated and displayed.\n"
            "\n"
            "examples:\n"
            "  %(prog)s backup.tar.gz\n"
            "  %(prog)s backup.tar.gz a1b2c3d4...\n"
            "  %(prog)s backup.tar.gz --password-file /run/secrets/gpg_password\n"
            "  %(prog)s backup.tar.gz a1b2c3d4... "
            "--password-file /run/secrets/gpg_password\n"
        ),
    )
    _add_version(parser)
    parser.add_argument(
        "tarball_file",
        help="Path to the tar/tar.gz/tar.bz2 file to encrypt.",
    )
    parser.add_argument(
        "sha256_hash",
        nargs="?",
        default=None,
        help="Expected SHA-256 hash of the tarball (optional).",
    )
    _add_password_file(parser, "encryption")
    return parser


def build_decrypt_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="tarball-decrypt",
        allow_abbrev=False,
        description="Decrypt a .gpg file, optionally verifying its SHA-256.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  %(prog)s backup.tar.gz.gpg\n"
            "  %(prog)s backup.tar.gz.gpg --password-file /run/secrets/gpg_password\n"
            "  %(prog)s backup.tar.gz.gpg --password-file /run/secrets/gpg_password "
            "--verify-hash\n"
            "  %(prog)s backup.tar.gz.gpg --output /tmp/backup.tar.gz\n"
        ),
    )
    _add_version(parser)
    parser.add_argument(
        "encrypted_file",
        help="Path to the .gpg file to decrypt.",
    )
    _add_password_file(parser, "decryption")
    parser.add_argument(
        "--output",
        default=None,
        metavar="FILE",
        help="Output file path (default: input without its .gpg extension).",
    )
    parser.add_argument(
        "--verify-hash",
        action="store_true",
        help="Verify SHA-256 after decryption (requires <encrypted_file>.sha256).",
    )
    return parser


def _parse(
    parser: argparse.ArgumentParser, argv: Sequence[str] | None
) -> argparse.Namespace:
    args = parser.parse_intermixed_args(argv)
    for flag in ("password_file", "output"):
        if getattr(args, flag, None) == "":
            parser.error(f"Missing value for --{flag.replace('_', '-')}")
    return args


def _fail(exc: VaultError) -> int:
    print_error(str(exc))
    for line in exc.details:
        print(line)
    for note in exc.notes:
        print_info(note)
    return 1


# ── Entry points ─────────────────────────────────────────────────────────────

def encrypt_main(argv: Sequence[str] | None = None, **backends: Any) -> int:
    colorama.just_fix_windows_console()
    args = _parse(build_encrypt_parser(), argv)
    options = EncryptOptions(
        archive_path=args.tarball_file,
        expected_sha256=args.sha256_hash or None,
        password_file=args.password_file,
    )
    try:
        encrypt_tarball(options, **backends)
    except VaultError as exc:
        return _fail(exc)
    return 0


def decrypt_main(argv: Sequence[str] | None = None, **backends: Any) -> int:
    colorama.just_fix_windows_console()
    args = _parse(build_decrypt_parser(), argv)
    options = DecryptOptions(
        encrypted_path=args.encrypted_file,
        output_path=args.output,
        password_file=args.password_file,
        verify_hash=args.verify_hash,
    )
    try:
        decrypt_tarball(options, **backends)
    except VaultError as exc:
        return _fail(exc)
    return 0


def encrypt() -> None:
    sys.exit(encrypt_main())


def decrypt() -> None:
    sys.exit(decrypt_main())

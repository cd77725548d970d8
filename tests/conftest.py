"""Shared fixtures for the tarball_vault test suite."""

from __future__ import annotations

import io
import os
import tarfile
from pathlib import Path

import pytest

from tarball_vault.backends import AesGcmCipher, CryptographyDigest, TarfileLister

# ── Reusable constants ───────────────────────────────────────────────────────

PASSWORD = "t3st-P@ssw0rd!#"
UNICODE_PASSWORD = "пароль_密码_κωδ_🔑"  # Cyrillic + CJK + Greek + emoji

FAST_KDF_ITERATIONS = 1000


# ── Archive fixtures ─────────────────────────────────────────────────────────

def _make_tarball(path: Path, mode: str) -> Path:
    with tarfile.open(path, mode) as tar:
        for name, data in (
            ("data/hello.txt", b"Hello, World!\n" * 100),
            ("data/binary.bin", os.urandom(4096)),
            ("data/empty.txt", b""),
        ):
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return path


@pytest.fixture()
def tar_archive(tmp_path: Path) -> Path:
    return _make_tarball(tmp_path / "data.tar", "w:")


@pytest.fixture()
def gz_archive(tmp_path: Path) -> Path:
    return _make_tarball(tmp_path / "data.tar.gz", "w:gz")


@pytest.fixture()
def bz2_archive(tmp_path: Path) -> Path:
    return _make_tarball(tmp_path / "data.tar.bz2", "w:bz2")


@pytest.fixture(params=[
    ("data.tar", "w:"),
    ("data.tar.gz", "w:gz"),
    ("data.tgz", "w:gz"),
    ("data.tar.bz2", "w:bz2"),
    ("data.tbz2", "w:bz2"),
], ids=lambda p: p[0])
def any_archive(request: pytest.FixtureRequest, tmp_path: Path) -> Path:
    name, mode = request.param
    return _make_tarball(tmp_path / name, mode)


@pytest.fixture()
def password_file(tmp_path: Path) -> Path:
    p = tmp_path / "secret.txt"
    p.write_text(PASSWORD + "\n")
    p.chmod(0o600)
    return p


# ── In-process collaborators ─────────────────────────────────────────────────

@pytest.fixture()
def cipher() -> AesGcmCipher:
    """Fast-KDF cipher that answers interactive prompts with PASSWORD."""
    return AesGcmCipher(
        iterations=FAST_KDF_ITERATIONS,
        prompt=lambda confirm: PASSWORD,
    )


@pytest.fixture()
def backends(cipher: AesGcmCipher) -> dict[str, object]:
    return {
        "lister": TarfileLister(),
        "cipher": cipher,
        "digest": CryptographyDigest(),
    }


@pytest.fixture()
def decrypt_backends(cipher: AesGcmCipher) -> dict[str, object]:
    return {"cipher": cipher, "digest": CryptographyDigest()}

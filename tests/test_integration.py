"""End-to-end tests against the real gpg, tar, and shasum/sha256sum binaries."""

from __future__ import annotations

import hashlib
import shutil
import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest

from tarball_vault.backends import GpgCipher, ShaToolDigest, TarLister
from tarball_vault.cli import decrypt_main, encrypt_main
from tarball_vault.core import (DecryptOptions, EncryptOptions, ToolError,
                                decrypt_tarball, encrypt_tarball)

pytestmark = pytest.mark.skipif(
    shutil.which("gpg") is None
    or shutil.which("tar") is None
    or (shutil.which("shasum") is None and shutil.which("sha256sum") is None),
    reason="gpg, tar and a SHA-256 tool are required",
)


@pytest.fixture(autouse=True)
def gnupg_home(monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Keep gpg away from the user's keyring and agent cache.

    A short path under the system temp dir keeps the agent socket path
    within the Unix socket length limit.
    """
    home = Path(tempfile.mkdtemp(prefix="gpg"))
    home.chmod(0o700)
    monkeypatch.setenv("GNUPGHOME", str(home))
    yield home
    shutil.rmtree(home, ignore_errors=True)


class TestGpgRoundTrip:
    @pytest.mark.parametrize("fixture", ["tar_archive", "gz_archive", "bz2_archive"])
    def test_byte_for_byte(
        self, request: pytest.FixtureRequest, fixture: str, password_file: Path
    ) -> None:
        archive: Path = request.getfixturevalue(fixture)
        original = archive.read_bytes()

        result = encrypt_tarball(
            EncryptOptions(str(archive), password_file=str(password_file))
        )
        assert result is not None
        assert Path(result.sidecar_path).read_text().split()[0] == (
            hashlib.sha256(original).hexdigest()
        )

        archive.unlink()
        decrypted = decrypt_tarball(
            DecryptOptions(
                result.ciphertext_path,
                password_file=str(password_file),
                verify_hash=True,
            )
        )
        assert decrypted is not None
        assert Path(decrypted.output_path).read_bytes() == original

    def test_wrong_passphrase_is_tool_error(
        self, gz_archive: Path, password_file: Path, tmp_path: Path
    ) -> None:
        encrypt_tarball(EncryptOptions(str(gz_archive), password_file=str(password_file)))
        wrong = tmp_path / "wrong.txt"
        wrong.write_text("not the password\n")
        wrong.chmod(0o600)
        with pytest.raises(ToolError):
            decrypt_tarball(
                DecryptOptions(
                    f"{gz_archive}.gpg",
                    output_path=str(tmp_path / "out.tar.gz"),
                    password_file=str(wrong),
                ),
                cipher=GpgCipher(),
            )

    def test_cli_scenario(self, gz_archive: Path, password_file: Path) -> None:
        original = gz_archive.read_bytes()
        assert encrypt_main([str(gz_archive), "--password-file", str(password_file)]) == 0
        gz_archive.unlink()
        code = decrypt_main(
            [f"{gz_archive}.gpg", "--password-file", str(password_file), "--verify-hash"]
        )
        assert code == 0
        assert gz_archive.read_bytes() == original

    def test_process_adapters_agree(self, gz_archive: Path) -> None:
        assert TarLister().available()
        assert ShaToolDigest().sha256(str(gz_archive)) == (
            hashlib.sha256(gz_archive.read_bytes()).hexdigest()
        )

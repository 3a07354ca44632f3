import io
import urllib.error
from unittest import mock

import pytest

from phplocal.executor import PhpVersion
from phplocal.platformsh import (
    INTERNAL_VERSION,
    PlatformInstallError,
    install_platform_phar,
    needs_install,
)


@pytest.fixture
def dirs(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    cache = tmp_path / "cache"
    return home, cache


def _install_cli(home):
    cli = home / ".platformsh" / "bin" / "platform"
    cli.parent.mkdir(parents=True)
    cli.write_text("cli")


def test_needs_install_without_cli(dirs):
    home, cache = dirs
    assert needs_install(str(home), str(cache)) is True
    assert cache.is_dir()


def test_needs_install_with_current_version(dirs):
    home, cache = dirs
    _install_cli(home)
    cache.mkdir()
    (cache / "internal_version").write_bytes(b"3")
    assert needs_install(str(home), str(cache)) is False


def test_needs_install_with_outdated_version(dirs):
    home, cache = dirs
    _install_cli(home)
    cache.mkdir()
    (cache / "internal_version").write_bytes(b"2")
    assert needs_install(str(home), str(cache)) is True


def test_needs_install_without_version_file(dirs):
    home, cache = dirs
    _install_cli(home)
    assert needs_install(str(home), str(cache)) is True


def test_install_skips_when_up_to_date(dirs):
    home, cache = dirs
    _install_cli(home)
    cache.mkdir()
    (cache / "internal_version").write_bytes(INTERNAL_VERSION)
    with mock.patch("urllib.request.urlopen") as urlopen:
        install_platform_phar(str(home), None, str(cache))
    assert urlopen.call_count == 0
    assert (cache / "internal_version").read_bytes() == INTERNAL_VERSION
    assert needs_install(str(home), str(cache)) is False


def test_install_download_failure(dirs):
    home, cache = dirs
    with mock.patch("urllib.request.urlopen", side_effect=urllib.error.URLError("offline")):
        with pytest.raises(PlatformInstallError):
            install_platform_phar(str(home), None, str(cache))
    assert not (cache / "internal_version").exists()


def test_install_failing_installer_cleans_up(dirs, tmp_path):
    home, cache = dirs
    missing_php = PhpVersion(version="8.2.0", php_path=str(tmp_path / "nowhere" / "php"))
    with mock.patch("urllib.request.urlopen", return_value=io.BytesIO(b"<?php exit(1);")):
        with pytest.raises(PlatformInstallError, match="unable to setup platformsh CLI"):
            install_platform_phar(str(home), missing_php, str(cache))
    assert not (home / "platformsh-installer.php").exists()
    assert not (cache / "internal_version").exists()
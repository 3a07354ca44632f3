"""Install the Platform.sh CLI phar used by cloud commands."""

from __future__ import annotations

import os
import sys
import tempfile
import urllib.request

from phplocal.executor import Executor, PhpVersion

# Bump to force installing a recent CLI when older ones are no longer compatible
INTERNAL_VERSION = b"3"

INSTALLER_URL = "https://platform.sh/cli/installer"

_FETCH_TIMEOUT = 60


class PlatformInstallError(Exception):
    """Raised when the Platform.sh CLI cannot be installed."""


def _default_cache_dir() -> str:
    return os.path.join(tempfile.gettempdir(), ".symfony", "platformsh", "cache")


def _version_path(cache_dir: str) -> str:
    return os.path.join(cache_dir, "internal_version")


def needs_install(home: str, cache_dir: str | None = None) -> bool:
    """Whether the CLI is missing or was installed for another internal version."""
    cache_dir = cache_dir or _default_cache_dir()
    os.makedirs(cache_dir, mode=0o755, exist_ok=True)
    if not os.path.exists(os.path.join(home, ".platformsh", "bin", "platform")):
        return True
    try:
        with open(_version_path(cache_dir), "rb") as file:
            return file.read() != INTERNAL_VERSION
    except OSError:
        return True


def install_platform_phar(
    home: str, version: PhpVersion | None = None, cache_dir: str | None = None
) -> None:
    """Download and run the CLI installer unless an up-to-date CLI is present."""
    cache_dir = cache_dir or _default_cache_dir()
    if not needs_install(home, cache_dir):
        return

    print("Download additional CLI tools...", file=sys.stderr)
    try:
        with urllib.request.urlopen(INSTALLER_URL, timeout=_FETCH_TIMEOUT) as response:
            installer = response.read()
    except OSError as exc:
        raise PlatformInstallError(f"unable to download the platformsh CLI installer: {exc}") from exc

    installer_path = os.path.join(home, "platformsh-installer.php")
    with open(installer_path, "wb") as file:
        file.write(installer)
    try:
        with tempfile.TemporaryFile() as output:
            executor = Executor(
                args=["php", installer_path],
                bin_name="php",
                version=version,
                home_dir=home,
                directory=home,
                skip_nb_args=1,
                stdout=output,
                stderr=output,
                extra_env={"PLATFORMSH_CLI_NO_INTERACTION": "1"},
            )
            if executor.execute() == 1:
                output.seek(0)
                text = output.read().decode("utf-8", errors="replace")
                raise PlatformInstallError(f"unable to setup platformsh CLI: {text}")
    finally:
        try:
            os.remove(installer_path)
        except FileNotFoundError:
            pass

    with open(_version_path(cache_dir), "wb") as file:
        file.write(INTERNAL_VERSION)
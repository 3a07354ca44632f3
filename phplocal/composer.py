"""Locate, download and run Composer with the project's PHP version."""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import subprocess
import sys
import urllib.request
from dataclasses import dataclass
from typing import IO, Iterable

from phplocal.executor import Executor, ExecutorError, PhpVersion, look_path

DEFAULT_COMPOSER_VERSION = 2

INSTALLER_URL = "https://getcomposer.org/installer"
INSTALLER_SIGNATURE_URL = "https://composer.github.io/installer.sig"
DOWNLOAD_HINT = "https://getcomposer.org/download/"

_FETCH_TIMEOUT = 60


class ComposerError(Exception):
    """Raised when Composer cannot be found, downloaded or run."""


@dataclass(frozen=True)
class ComposerResult:
    """Outcome of a Composer run: its exit code and an error message, if any."""

    code: int = 0
    error: str = ""

    @property
    def exit_code(self) -> int:
        return self.code

    @property
    def ok(self) -> bool:
        return self.code == 0 and not self.error

    def __str__(self) -> str:
        return self.error

    def raise_for_error(self) -> None:
        """Raise ComposerError when the run failed."""
        if not self.ok:
            raise ComposerError(self.error)


def is_php_script(path: str) -> bool:
    """Whether path is a PHP script or phar with a php shebang (not a .bat wrapper)."""
    try:
        with open(path, "rb") as file:
            line = file.readline()
    except OSError:
        return False
    if not line:
        return False
    if line.endswith(b"\n"):
        line = line[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]
    return line.startswith(b"#!/") and line.endswith(b"php")


def composer_version(cwd: str | None = None) -> int:
    """Major Composer version the project's composer.lock was written by."""
    try:
        directory = cwd if cwd is not None else os.getcwd()
        with open(os.path.join(directory, "composer.lock"), "rb") as file:
            lock = json.load(file)
    except (OSError, ValueError):
        return DEFAULT_COMPOSER_VERSION
    if not isinstance(lock, dict):
        return DEFAULT_COMPOSER_VERSION
    version = lock.get("plugin-api-version", "")
    if not isinstance(version, str):
        return DEFAULT_COMPOSER_VERSION
    if version.startswith("1."):
        return 1
    return DEFAULT_COMPOSER_VERSION


def _first_file(candidates: Iterable[str]) -> str:
    for path in candidates:
        if os.path.exists(path) and not os.path.isdir(path):
            return path
    return ""


def find_composer_system_specific(extra_bin: str) -> str:
    """Composer phar installed by a system package manager (Nix, Scoop), or ""."""
    if sys.platform == "win32":
        scoop_paths = []
        scoop = shutil.which("scoop")
        if scoop:
            scoop_paths.append(os.path.dirname(os.path.dirname(scoop)))
        if not os.environ.get("SCOOP_GLOBAL", ""):
            program_data = os.environ.get("PROGRAMDATA", "")
            if program_data:
                scoop_paths.append(os.path.join(program_data, "scoop"))
        return _first_file(
            os.path.join(path, "apps", "composer", "current", "composer.phar") for path in scoop_paths
        )

    # NixOS exposes its packages through buildInputs
    return _first_file(
        os.path.join(path, "libexec/composer/composer.phar")
        for path in os.environ.get("buildInputs", "").split(" ")
    )


def find_composer(extra_bin: str, version: PhpVersion | None = None) -> str:
    """Path of Composer next to the PHP binary or on PATH; raise FileNotFoundError."""
    # package-manager installs come first: their PATH entries are shell
    # wrappers that cannot be run through PHP
    phar_path = find_composer_system_specific(extra_bin)
    if phar_path:
        return phar_path
    for file in (extra_bin, "composer", "composer.phar"):
        phar_path = look_path(file, version)
        if phar_path:
            if phar_path.endswith(".bat"):
                phar_path = phar_path[:-4] + ".phar"
            return phar_path
    raise FileNotFoundError("composer was not found")


def find_composer_for(executor: Executor, extra_bin: str) -> str:
    """Composer in the executor's script directory, else the system-wide one."""
    try:
        script_dir = executor.detect_script_dir()
    except (ExecutorError, OSError):
        script_dir = None
    if script_dir is not None:
        found = _first_file(
            os.path.join(script_dir, file) for file in (extra_bin, "composer.phar", "composer")
        )
        if found:
            return found
    return find_composer(extra_bin, executor.version)


def _fetch(url: str) -> bytes:
    with urllib.request.urlopen(url, timeout=_FETCH_TIMEOUT) as response:
        return response.read()


def download_composer(directory: str, version: PhpVersion | None = None) -> str:
    """Install composer.phar into directory unless present; return its path."""
    os.makedirs(directory, mode=0o755, exist_ok=True)
    path = os.path.join(directory, "composer.phar")
    if os.path.exists(path):
        return path

    try:
        signature = _fetch(INSTALLER_SIGNATURE_URL)
        installer = _fetch(INSTALLER_URL)
    except OSError as exc:
        raise ComposerError(f"unable to download Composer: {exc}") from exc
    digest = hashlib.sha384(installer).hexdigest().encode("ascii")
    if digest != signature:
        raise ComposerError("signature was wrong when downloading Composer; please try again")

    setup_path = os.path.join(directory, "composer-setup.php")
    with open(setup_path, "wb") as file:
        file.write(installer)

    executor = Executor(
        args=["php", setup_path, "--quiet"],
        bin_name="php",
        version=version,
        directory=directory,
        skip_nb_args=1,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    if executor.execute() == 1:
        raise ComposerError("unable to setup Composer")
    os.chmod(path, 0o755)
    os.remove(setup_path)
    return path


def run_composer(
    directory: str,
    args: list[str],
    env: dict[str, str] | None = None,
    version: PhpVersion | None = None,
    home_dir: str = "",
    stdout: IO | None = None,
    stderr: IO | None = None,
    logger: IO | None = None,
) -> ComposerResult:
    """Run Composer with args in directory, downloading it when none is installed."""
    logger = logger if logger is not None else sys.stderr
    extra_env = dict(env or {})
    if not os.environ.get("COMPOSER_MEMORY_LIMIT", ""):
        extra_env["COMPOSER_MEMORY_LIMIT"] = "-1"

    executor = Executor(
        args=[],
        bin_name="php",
        version=version,
        home_dir=home_dir,
        directory=directory,
        skip_nb_args=-1,
        stdout=stdout,
        stderr=stderr,
        extra_env=extra_env,
    )
    composer_bin = "composer2" if composer_version() == 2 else "composer1"
    try:
        path: str | None = find_composer_for(executor, composer_bin)
    except FileNotFoundError:
        path = None

    if path is None or not is_php_script(path):
        print(
            "  WARNING: Unable to find Composer, downloading one. "
            f"It is recommended to install Composer yourself at {DOWNLOAD_HINT}",
            file=logger,
        )
        # kept outside bin/ so that find_composer never picks it up: it is only a fallback
        bin_dir = os.path.join(home_dir, "composer")
        try:
            path = download_composer(bin_dir, version)
        except (ComposerError, OSError) as exc:
            return ComposerResult(
                code=1,
                error=f"unable to find composer, get it at {DOWNLOAD_HINT}: {exc}",
            )

    executor.args = ["php", path, *args]
    logger.write(f"  (running {path} {' '.join(args).strip()})\n\n")
    ret = executor.execute()
    if ret != 0:
        return ComposerResult(code=ret, error=f"unable to run {path} {' '.join(args)}")
    return ComposerResult()
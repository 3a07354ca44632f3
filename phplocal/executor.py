"""Run PHP binaries with the version and configuration chosen for a project."""

from __future__ import annotations

import os
import shutil
import signal
import stat
import subprocess
import sys
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from typing import IO

_BINARY_NAMES = ("php", "pecl", "pear", "php-fpm", "php-cgi", "php-config", "phpdbg", "phpize")

# options of the php CLI that take a value
_VALUE_FLAGS = ("-c", "-d", "-r", "-B", "-R", "-F", "-E", "-S", "-t", "-z")

_FORWARDED_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT", "SIGUSR1", "SIGUSR2", "SIGCHLD")


class ExecutorError(Exception):
    """Raised when PHP cannot be configured or found."""


@dataclass(frozen=True)
class PhpVersion:
    """An installed PHP version and the paths of its binaries."""

    version: str
    php_path: str
    fpm_path: str = ""
    cgi_path: str = ""
    php_config_path: str = ""
    phpize_path: str = ""
    phpdbg_path: str = ""


def get_binary_names() -> list[str]:
    """Names of the binaries that belong to a PHP installation."""
    return list(_BINARY_NAMES)


def is_binary_name(name: str) -> bool:
    """Whether name is one of the PHP binary names."""
    return name in _BINARY_NAMES


def should_signal_be_ignored(sig: int) -> bool:
    """Whether a received signal must not be forwarded to the child process."""
    if sys.platform == "win32":
        return False
    # the child's own state change; sending it back makes no sense
    return sig == signal.SIGCHLD


def symlink(oldname: str, newname: str) -> None:
    """Link newname to oldname; on Windows the file is copied instead."""
    if sys.platform == "win32":
        shutil.copyfile(oldname, newname)
    else:
        os.symlink(oldname, newname)


def _is_executable_file(path: str) -> bool:
    try:
        mode = os.stat(path).st_mode
    except OSError:
        return False
    return not stat.S_ISDIR(mode) and mode & 0o111 != 0


def look_path(file: str, version: PhpVersion | None = None) -> str | None:
    """Find file next to the PHP binary of version first, then on PATH."""
    if version is not None:
        path = os.path.join(os.path.dirname(version.php_path), file)
        if _is_executable_file(path):
            return path
    return shutil.which(file)


def detect_script_dir(args: list[str]) -> str:
    """Directory of the script named in PHP CLI args, or the current directory."""
    script = ""
    remaining = iter(args)
    for arg in remaining:
        if arg.startswith("-f"):
            script = arg[2:] if len(arg) > 2 else next(remaining, "")
            break
        if len(arg) == 2 and arg.startswith(_VALUE_FLAGS):
            next(remaining, None)
            continue
        if arg == "--":
            break
        if arg.startswith("-"):
            continue
        script = arg
        break

    if script:
        return os.path.dirname(os.path.abspath(script))
    try:
        return os.getcwd()
    except OSError:
        return "/"


@dataclass
class Executor:
    """Configures and runs a PHP binary for a project."""

    args: list[str]
    bin_name: str = "php"
    version: PhpVersion | None = None
    home_dir: str = ""
    directory: str = ""
    skip_nb_args: int = 0
    stdout: IO | None = None
    stderr: IO | None = None
    stdin: IO | None = None
    paths: list[str] = field(default_factory=list)
    extra_env: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    in_cloud: bool = False
    script_dir: str = ""
    ini_dir: str = ""
    environ: dict[str, str] = field(default_factory=dict, init=False)
    temp_dir: str = field(default="", init=False)

    def detect_script_dir(self) -> str:
        """Directory of the script being run, computed once."""
        if self.script_dir:
            return self.script_dir
        if self.skip_nb_args == 0:
            self.skip_nb_args = 1
        if self.skip_nb_args < 0:
            self.script_dir = os.getcwd()
        else:
            if not self.args:
                raise ExecutorError("args cannot be empty")
            self.script_dir = detect_script_dir(self.args[self.skip_nb_args:])
        return self.script_dir

    def _lookup(self) -> tuple[str, bool]:
        version = self.version
        if version is None:
            raise ExecutorError("no PHP version is configured")
        path = version.php_path
        phpini_args = True
        alternatives = {
            "php-fpm": (version.fpm_path, True),
            "php-cgi": (version.cgi_path, True),
            "php-config": (version.php_config_path, False),
            "phpize": (version.phpize_path, False),
            "phpdbg": (version.phpdbg_path, False),
        }
        if self.bin_name in alternatives:
            candidate, phpini_args = alternatives[self.bin_name]
            if not candidate:
                raise ExecutorError(
                    f"{self.bin_name} does not seem to be available under {os.path.dirname(path)}"
                )
            path = candidate
        elif self.bin_name in ("pecl", "pear"):
            phpini_args = False
            path = os.path.join(os.path.dirname(path), self.bin_name)
        if not os.path.exists(path):
            raise ExecutorError(
                f"{self.bin_name} does not seem to be available anymore under {os.path.dirname(path)}"
            )
        return path, phpini_args

    def config(self) -> None:
        """Resolve the PHP binary and prepare the environment to run it."""
        self.environ = {}
        if not self.args:
            raise ExecutorError("args cannot be empty")
        self.detect_script_dir()
        self.environ.update(self.env)

        if self.in_cloud:
            self.args[0] = self.bin_name
            return

        path, phpini_args = self._lookup()
        version = self.version
        assert version is not None
        self.environ["PHP_BINARY"] = version.php_path
        self.environ["PHP_PATH"] = version.php_path
        self.environ["PHP_PEAR_PHP_BIN"] = version.php_path

        # a directory of links so that "php", "php-config" and friends resolve
        # to this version even when the binaries carry a prefix or suffix
        home = self.home_dir or tempfile.gettempdir()
        php_dir = os.path.join(home, "tmp", uuid.uuid4().hex, "bin")
        self.temp_dir = php_dir
        os.makedirs(php_dir, mode=0o755, exist_ok=True)
        try:
            for target, alias, keep_base in (
                (version.php_config_path, "php-config", True),
                (version.phpize_path, "phpize", True),
                (version.phpdbg_path, "phpdbg", False),
            ):
                if not target:
                    continue
                symlink(target, os.path.join(php_dir, alias))
                base = os.path.basename(target)
                if keep_base and base != alias:
                    symlink(target, os.path.join(php_dir, base))
            bin_link = os.path.join(php_dir, self.bin_name)
            if not os.path.lexists(bin_link):
                symlink(path, bin_link)
        except OSError as exc:
            raise ExecutorError(str(exc)) from exc

        self.paths = [os.path.dirname(path), php_dir, *self.paths]

        if phpini_args:
            dirs = ""
            ini_dir = self.phpini_dir_for_dir()
            if ini_dir:
                dirs += os.pathsep + ini_dir
            if self.ini_dir:
                dirs += os.pathsep + self.ini_dir
            if dirs:
                self.environ["PHP_INI_SCAN_DIR"] = os.environ.get("PHP_INI_SCAN_DIR", "") + dirs

        self.args[0] = path

    def _child_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.environ)
        full_path = os.environ.get("PATH", "")
        for path in self.paths:
            full_path = f"{path}{os.pathsep}{full_path}"
        env["PATH"] = full_path
        env.update(self.extra_env)
        return env

    def execute(self) -> int:
        """Run the configured binary and return its exit code."""
        try:
            self.config()
        except (ExecutorError, OSError) as exc:
            print(exc, file=sys.stderr)
            return 1
        try:
            try:
                process = subprocess.Popen(
                    self.args,
                    env=self._child_env(),
                    stdout=self.stdout,
                    stderr=self.stderr,
                    stdin=self.stdin,
                    cwd=self.directory or None,
                )
            except OSError as exc:
                print(exc, file=sys.stderr)
                return 1
            with _forward_signals(process):
                returncode = process.wait()
            if returncode < 0:
                print(f"signal: {signal.Signals(-returncode).name}", file=sys.stderr)
                return -1
            return returncode
        finally:
            for directory in (self.ini_dir, self.temp_dir):
                if directory:
                    shutil.rmtree(directory, ignore_errors=True)

    def paths_to_watch(self) -> list[str]:
        """Files whose change requires restarting the PHP process."""
        ini_dir = self.phpini_dir_for_dir()
        return [os.path.join(ini_dir, "php.ini")] if ini_dir else []

    def phpini_dir_for_dir(self) -> str:
        """Closest directory holding a php.ini, from the script dir upwards."""
        directory = self.script_dir
        while True:
            if os.path.exists(os.path.join(directory, "php.ini")):
                return directory
            parent = os.path.dirname(directory)
            if parent in (directory, "", "."):
                return ""
            directory = parent


class _forward_signals:
    """Relay signals received by this process to a child while it runs."""

    def __init__(self, process: subprocess.Popen) -> None:
        self._process = process
        self._previous: dict[int, object] = {}

    def _handler(self, signum: int, _frame: object) -> None:
        if self._process.poll() is not None:
            return
        try:
            self._process.send_signal(signum)
        except ProcessLookupError:
            pass
        except OSError as exc:
            print("error sending signal", signum, exc, file=sys.stderr)

    def __enter__(self) -> _forward_signals:
        if threading.current_thread() is not threading.main_thread():
            return self
        for sig_name in _FORWARDED_SIGNALS:
            sig = getattr(signal, sig_name, None)
            if sig is None or should_signal_be_ignored(sig):
                continue
            try:
                self._previous[sig] = signal.signal(sig, self._handler)
            except (OSError, ValueError):
                continue
        return self

    def __exit__(self, *exc_info: object) -> None:
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()
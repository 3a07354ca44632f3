"""Pid files that track local web servers and their workers."""

from __future__ import annotations

import hashlib
import json
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

_POLL_INTERVAL = 0.05


def hash_name(value: str) -> str:
    """Return the hex SHA-1 digest used to name files for a directory or command."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ConfiguredProject:
    """A running project as seen from its pid file."""

    port: int
    scheme: str


@dataclass
class PidFile:
    """State of a process started for a project, persisted as JSON."""

    home_dir: str
    directory: str
    path: str
    args: list[str] | None = None
    watched: list[str] | None = None
    pid: int = 0
    port: int = 0
    scheme: str = ""
    custom_name: str = ""

    def __str__(self) -> str:
        if self.custom_name:
            return self.custom_name
        if self.args is None:
            return "Web Server"
        return self.command()

    def command(self) -> str:
        return " ".join(self.args or [])

    def short_name(self) -> str:
        if self.custom_name:
            return self.custom_name
        if not self.args:
            return "Web Server"
        return "Worker " + self.args[0]

    def name(self) -> str:
        return hash_name(self.directory)

    def binary(self) -> str:
        return self.args[0] if self.args else ""

    def log_file(self) -> str:
        if self.args is None:
            return os.path.join(self.home_dir, "log", hash_name(self.directory) + ".log")
        if self.custom_name:
            return os.path.join(self.worker_log_dir(), hash_name(self.custom_name) + ".log")
        return os.path.join(self.worker_log_dir(), hash_name(self.command()) + ".log")

    def pid_file(self) -> str:
        return self.path

    def worker_log_dir(self) -> str:
        return os.path.join(self.home_dir, "log", hash_name(self.directory))

    def worker_pid_dir(self) -> str:
        return os.path.join(self.home_dir, "var", hash_name(self.directory))

    def log_reader(self) -> BinaryIO:
        """Open the log file for reading, creating it when missing."""
        log_file = Path(self.log_file())
        log_file.parent.mkdir(parents=True, exist_ok=True)
        log_file.touch(exist_ok=True)
        return log_file.open("rb")

    def log_writer(self) -> BinaryIO:
        """Open the log file for writing, truncating any previous content."""
        log_file = Path(self.log_file())
        log_file.parent.mkdir(parents=True, exist_ok=True)
        return log_file.open("w+b")

    def remove(self) -> None:
        """Remove the log and pid files; directories are kept."""
        for file in (self.log_file(), self.pid_file()):
            try:
                os.remove(file)
            except FileNotFoundError:
                pass

    def to_json(self) -> dict:
        return {
            "dir": self.directory,
            "watch": self.watched,
            "pid": self.pid,
            "port": self.port,
            "scheme": self.scheme,
            "args": self.args,
            "name": self.custom_name,
        }

    def write(self, pid: int, port: int, scheme: str) -> None:
        """Record the process and persist the pid file."""
        try:
            old = load(self.path, self.home_dir)
        except (OSError, ValueError):
            old = None
        if old is not None and old.is_running():
            raise RuntimeError(f"Process is already running under PID {old.pid}")

        self.pid = pid
        self.port = port
        self.scheme = scheme

        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        Path(self.path).write_text(json.dumps(self.to_json(), indent=4), encoding="utf-8")

    def stop(self) -> None:
        """Terminate the recorded process and remove its files."""
        if self.pid == 0:
            return
        try:
            kill_process(self.pid)
        finally:
            self.remove()

    def is_running(self) -> bool:
        if self.pid == 0:
            return False
        return _process_exists(self.pid)

    def wait_for_pid(self, timeout: float | None = None) -> None:
        """Block until the pid file exists; raise TimeoutError after timeout seconds."""
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        _wait_for_file(self.path, timeout)

    def wait_for_logs(self, timeout: float | None = None) -> None:
        """Block until the log file exists; raise TimeoutError after timeout seconds."""
        log_file = self.log_file()
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        _wait_for_file(log_file, timeout)


def _wait_for_file(path: str, timeout: float | None) -> None:
    deadline = None if timeout is None else time.monotonic() + timeout
    while not os.path.exists(path):
        if deadline is not None and time.monotonic() >= deadline:
            raise TimeoutError(f"{path} did not appear in time")
        time.sleep(_POLL_INTERVAL)


def _from_json(data: object, path: str, home_dir: str) -> PidFile:
    if not isinstance(data, dict):
        raise ValueError(f"{path}: pid file does not hold an object")
    args = data.get("args")
    watched = data.get("watch")
    return PidFile(
        home_dir=home_dir,
        directory=data.get("dir") or "",
        path=path,
        args=list(args) if args is not None else None,
        watched=list(watched) if watched is not None else None,
        pid=int(data.get("pid") or 0),
        port=int(data.get("port") or 0),
        scheme=data.get("scheme") or "",
        custom_name=data.get("name") or "",
    )


def load(path: str, home_dir: str) -> PidFile:
    """Load a pid file; raise OSError if unreadable and ValueError if malformed."""
    contents = Path(path).read_text(encoding="utf-8")
    return _from_json(json.loads(contents), path, home_dir)


def new_pidfile(home_dir: str, directory: str, args: list[str] | None) -> PidFile:
    """Return the pid file for a server (args is None) or a worker, loading it if present."""
    if args is None:
        path = os.path.join(home_dir, "var", hash_name(directory) + ".pid")
    else:
        path = os.path.join(home_dir, "var", hash_name(directory), hash_name(" ".join(args)) + ".pid")
    try:
        return load(path, home_dir)
    except (OSError, ValueError):
        return PidFile(home_dir=home_dir, directory=directory, path=path, args=args)


def _collect(home_dir: str, directory: str) -> list[PidFile]:
    """Running pid files found directly inside directory; stale ones are removed."""
    try:
        entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
    except OSError:
        return []
    pid_files = []
    for entry in entries:
        if entry.is_dir() or not entry.name.endswith(".pid"):
            continue
        try:
            pid_file = load(entry.path, home_dir)
        except (OSError, ValueError, TypeError):
            continue
        if "__proxy__" in pid_file.directory:
            continue
        if not pid_file.is_running():
            pid_file.remove()
            continue
        pid_files.append(pid_file)
    return pid_files


def all_workers(home_dir: str, directory: str) -> list[PidFile]:
    """Running workers of the project in directory."""
    return _collect(home_dir, os.path.join(home_dir, "var", hash_name(directory)))


def to_configured_projects(home_dir: str) -> dict[str, ConfiguredProject]:
    """Running servers keyed by project directory, with the user's home shown as ~."""
    try:
        user_home = str(Path.home())
    except RuntimeError:
        user_home = ""
    projects = {}
    for pid_file in _collect(home_dir, os.path.join(home_dir, "var")):
        if not pid_file.is_running():
            continue
        short_dir = pid_file.directory
        if short_dir.startswith(user_home):
            short_dir = "~" + short_dir[len(user_home):]
        projects[short_dir] = ConfiguredProject(port=pid_file.port, scheme=pid_file.scheme)
    return projects


def kill_process(pid: int) -> None:
    """Terminate a process; on POSIX its whole process group receives SIGTERM."""
    if sys.platform == "win32":
        os.kill(pid, signal.SIGTERM)
        return
    pgid = os.getpgid(pid)
    os.killpg(pgid, signal.SIGTERM)


def _process_exists(pid: int) -> bool:
    if sys.platform == "win32":
        result = subprocess.run(
            ["tasklist", "/FI", f"PID eq {pid}", "/NH"],
            capture_output=True,
            text=True,
            check=False,
        )
        return str(pid) in result.stdout.split()
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True
"""A PHP backend (php-fpm, php-cgi or the built-in server) for the local web server."""

from __future__ import annotations

import enum
import os
import posixpath
import shutil
import sys
import tempfile
from dataclasses import dataclass, field

from phplocal.executor import Executor, PhpVersion
from phplocal.fpm import fpm_config, fpm_config_file
from phplocal.pidfile import hash_name
from phplocal.router import php_router_file, router_script

_ADDSLASHES = str.maketrans({"\\": "\\\\", "'": "\\'"})


class ServerError(Exception):
    """Raised when the PHP backend cannot be prepared or used."""


class _ServerKind(enum.Enum):
    FPM = "fpm"
    CGI = "cgi"
    CLI = "cli"


def addslashes(value: str) -> str:
    """Escape backslashes and single quotes for a single-quoted PHP string."""
    return value.translate(_ADDSLASHES)


def name(directory: str) -> str:
    """Hex SHA-1 of a directory, used to name per-project files."""
    return hash_name(directory)


def render_env_file(env: dict[str, str]) -> str:
    """PHP code that assigns every variable of env to $_ENV."""
    lines = "".join(
        f"$_ENV['{addslashes(key)}'] = '{addslashes(value)}';\n" for key, value in env.items()
    )
    return "<?php " + lines


def _clean_url_path(path: str) -> str:
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _join(*parts: str) -> str:
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    return os.path.normpath(joined.replace("//", "/"))


def _split_host_port(address: str) -> tuple[str, str]:
    if address.startswith("["):
        end = address.find("]")
        if end == -1 or not address[end + 1:].startswith(":"):
            return "", ""
        return address[1:end], address[end + 2:]
    host, sep, port = address.rpartition(":")
    if not sep or ":" in host:
        return "", ""
    return host, port


@dataclass
class ServerRequest:
    """The parts of an incoming HTTP request that PHP needs."""

    method: str = "GET"
    path: str = "/"
    raw_query: str = ""
    request_uri: str = ""
    host: str = ""
    headers: dict[str, list[str]] = field(default_factory=dict)
    remote_addr: str = ""
    tls: bool = False

    @classmethod
    def from_uri(cls, uri: str, method: str = "GET", **kwargs: object) -> ServerRequest:
        """Build a request whose path and query come from uri."""
        path, _, query = uri.partition("?")
        return cls(method=method, path=path or "/", raw_query=query, request_uri=uri, **kwargs)

    def header(self, key: str) -> str:
        """First value of a header, matched case-insensitively, or ""."""
        wanted = key.lower()
        for header_name, values in self.headers.items():
            if header_name.lower() == wanted and values:
                return values[0]
        return ""


@dataclass
class ServerCommand:
    """How to start the PHP process that backs the server."""

    bin_name: str
    worker_name: str
    args: list[str]
    working_dir: str
    env: dict[str, str] = field(default_factory=dict)
    paths_to_remove: list[str] = field(default_factory=list)
    proxy_target: str | None = None

    def executor(self, version: PhpVersion, home_dir: str, script_dir: str) -> Executor:
        """An executor that runs this command for the project in script_dir."""
        return Executor(
            args=list(self.args),
            bin_name=self.bin_name,
            version=version,
            home_dir=home_dir,
            directory=self.working_dir,
            script_dir=script_dir,
            extra_env=dict(self.env),
        )

    def cleanup(self) -> None:
        """Remove the files written to start the process."""
        for path in self.paths_to_remove:
            if os.path.isdir(path):
                shutil.rmtree(path, ignore_errors=True)
            else:
                try:
                    os.remove(path)
                except FileNotFoundError:
                    pass


@dataclass
class Server:
    """A PHP server process for a project: php-fpm, php-cgi or php's built-in server."""

    version: PhpVersion
    home_dir: str
    project_dir: str
    document_root: str
    passthru: str
    local_env: dict[str, str] = field(default_factory=dict)
    addr: str = ""

    @property
    def _kind(self) -> _ServerKind:
        if self.version.fpm_path:
            return _ServerKind.FPM
        if self.version.cgi_path:
            return _ServerKind.CGI
        return _ServerKind.CLI

    @property
    def server_path(self) -> str:
        return self.version.fpm_path or self.version.cgi_path or self.version.php_path

    def generate_env(self, request: ServerRequest) -> dict[str, str]:
        """CGI environment for a request."""
        script_name = self.passthru
        https = "On" if request.tls else ""

        path_info = request.path
        pos = path_info.lower().find(".php")
        if pos != -1:
            file = _clean_url_path(path_info[: pos + 4])
            if os.path.exists(_join(self.document_root, file)):
                script_name = file
                path_info = path_info[pos + 4:]

        remote_addr = request.header("X-Client-IP")
        remote_port = ""
        if not remote_addr:
            remote_addr, remote_port = _split_host_port(request.remote_addr)

        env = {
            "CONTENT_LENGTH": request.header("Content-Length"),
            "CONTENT_TYPE": request.header("Content-Type"),
            "DOCUMENT_URI": script_name,
            "DOCUMENT_ROOT": self.document_root,
            "GATEWAY_INTERFACE": "CGI/1.1",
            "HTTP_HOST": request.host,
            "HTTP_MOD_REWRITE": "On",  # some applications rely on it
            "HTTPS": https,
            "PATH_INFO": path_info,
            "QUERY_STRING": request.raw_query,
            "REDIRECT_STATUS": "200",  # required by PHP built with --enable-force-cgi-redirect
            "REMOTE_ADDR": remote_addr,
            "REMOTE_PORT": remote_port,
            "REQUEST_METHOD": request.method,
            "REQUEST_URI": request.request_uri,
            "SCRIPT_FILENAME": _join(self.document_root, script_name),
            "SCRIPT_NAME": script_name,
        }
        env.update(self.local_env)

        for header_name, values in request.headers.items():
            key = header_name.upper().replace("-", "_")
            # a client-provided Host must never become HTTP_HOST (httpoxy)
            if key == "HOST":
                continue
            env["HTTP_" + key] = ";".join(values)
        return env

    def prepare(self, port: int, log_file: str = "", debug: bool = False) -> ServerCommand:
        """Write the files the PHP process needs and describe how to start it on port."""
        self.addr = f":{port}"
        server_path = self.server_path
        kind = self._kind
        try:
            if kind is _ServerKind.FPM:
                config_path = self.fpm_config_file()
                with open(config_path, "w", encoding="utf-8") as file:
                    file.write(fpm_config(self.version.version, self.addr, debug))
                args = [server_path, "--nodaemonize", "--fpm-config", config_path]
                if self.version.version[:1] >= "7":
                    args.append("--force-stderr")
                return ServerCommand(
                    bin_name="php-fpm",
                    worker_name="PHP-FPM",
                    args=args,
                    working_dir=self.document_root,
                    paths_to_remove=[config_path],
                )
            if kind is _ServerKind.CGI:
                # php-cgi reads php.ini from its working directory; run it elsewhere
                # so the default configuration is loaded (the local one comes via
                # PHP_INI_SCAN_DIR)
                error_log = log_file if sys.platform == "win32" and log_file else "/dev/fd/2"
                return ServerCommand(
                    bin_name="php-cgi",
                    worker_name="PHP-CGI",
                    args=[server_path, "-b", str(port), "-d", "error_log=" + error_log],
                    working_dir=tempfile.gettempdir(),
                )
            router_path = self.php_router_file()
            with open(router_path, "wb") as file:
                file.write(router_script())
        except OSError as exc:
            raise ServerError(str(exc)) from exc

        addr = f"127.0.0.1:{port}"
        return ServerCommand(
            bin_name="php",
            worker_name="PHP",
            args=[server_path, "-S", addr, "-d", "variables_order=EGPCS", router_path],
            working_dir=self.document_root,
            env={"APP_FRONT_CONTROLLER": self.passthru.lstrip("/")},
            paths_to_remove=[router_path],
            proxy_target=f"http://{addr}",
        )

    def write_env_file(self, request_id: str, env: dict[str, str]) -> str:
        """Write the per-request environment read by the router script; return its path."""
        if not self.passthru:
            raise ServerError(
                f'Unable to guess the web front controller under "{self.project_dir}"'
            )
        path = f"{self.php_router_file()}-{request_id}-env"
        try:
            with open(path, "w", encoding="utf-8") as file:
                file.write(render_env_file(env))
        except OSError as exc:
            raise ServerError(str(exc)) from exc
        return path

    def fpm_config_file(self) -> str:
        return fpm_config_file(self.home_dir, self.project_dir, self.version.version)

    def php_router_file(self) -> str:
        return php_router_file(self.home_dir, self.project_dir)
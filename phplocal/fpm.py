"""PHP-FPM configuration for serving a project locally."""

from __future__ import annotations

import os
import re
import subprocess

from packaging.version import InvalidVersion, Version

from phplocal.pidfile import hash_name

# users a web server usually runs as, tried in order when running as root
_DEFAULT_USERS = (
    "www-data",  # debian-like, alpine
    "apache",  # fedora
    "http",  # pld linux
    "www",  # freebsd
    "_www",  # macOS
)

_MIN_WORKER_OUTPUT_VERSION = (7, 3, 0)


def _version_tuple(version: str) -> tuple[int, ...]:
    try:
        return Version(version).release
    except InvalidVersion:
        numbers = re.findall(r"\d+", version.split("-", 1)[0])
        return tuple(int(number) for number in numbers[:3])


def _supports_worker_output_settings(version: str) -> bool:
    release = _version_tuple(version)
    padded = release + (0,) * (3 - len(release))
    return padded >= _MIN_WORKER_OUTPUT_VERSION


def _logged_in_user() -> str:
    try:
        result = subprocess.run(["logname"], capture_output=True, text=True, check=False)
    except OSError:
        return ""
    if result.returncode != 0:
        return ""
    return (result.stdout or "").strip()


def fpm_user_config() -> str:
    """The user/group lines FPM needs when running as root, else ""."""
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None or geteuid() != 0:
        return ""
    import pwd

    uid = "nobody"
    gid = "nobody"
    # prefer the logged-in user (differs from the current one under sudo);
    # without a login (a container for instance) fall back to common users
    users = list(_DEFAULT_USERS)
    logged_in = _logged_in_user()
    if logged_in:
        users.insert(0, logged_in)
    for name in users:
        try:
            entry = pwd.getpwnam(name)
        except KeyError:
            continue
        uid = str(entry.pw_uid)
        gid = str(entry.pw_gid)
        break
    return f"user = {uid}\ngroup = {gid}"


def fpm_config(version: str, addr: str, debug: bool = False, user_config: str | None = None) -> str:
    """FPM configuration listening on addr for the given PHP version."""
    if not addr:
        raise ValueError("addr cannot be empty")
    log_level = "debug" if debug else "notice"
    if user_config is None:
        user_config = fpm_user_config()
    worker_config = ""
    log_limit = ""
    if _supports_worker_output_settings(version):
        worker_config = "decorate_workers_output = no"
        log_limit = "log_limit = 8192"
    listen = addr
    if listen.startswith(":"):
        listen = "127.0.0.1" + listen
    return f"""
[global]
error_log = /dev/fd/2
log_level = {log_level}
daemonize = no
{log_limit}

[www]
{user_config}
listen = {listen}
listen.allowed_clients = 127.0.0.1
pm = dynamic
pm.max_children = 5
pm.start_servers = 2
pm.min_spare_servers = 1
pm.max_spare_servers = 3
pm.status_path = /__php-fpm-status__

; Ensure worker stdout and stderr are sent to the main error log
catch_workers_output = yes
{worker_config}

php_admin_value[error_log] = /dev/fd/2
php_admin_flag[log_errors] = on

; we want to expose env vars (like in FOO=bar symfony server:start)
clear_env = no
"""


def fpm_config_file(home_dir: str, project_dir: str, version: str) -> str:
    """Path of the FPM configuration file for a project; its directory is created."""
    path = os.path.join(home_dir, "php", hash_name(project_dir), f"fpm-{version}.ini")
    os.makedirs(os.path.dirname(path), mode=0o755, exist_ok=True)
    return path
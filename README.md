# phplocal

Helpers for running PHP projects on a development machine.

- `phplocal.executor` resolves the binary to run (`php`, `php-fpm`,
  `php-cgi`, `php-config`, `phpize`, `phpdbg`, `pecl`, `pear`) from a
  `PhpVersion`, prepares the child environment (`PATH`,
  `PHP_INI_SCAN_DIR`, `PHP_BINARY`, `PHP_PATH`, `PHP_PEAR_PHP_BIN`),
  runs it and relays signals to it.
- `phplocal.composer` locates Composer (script directory, NixOS or
  Scoop installs, next to the PHP binary, `PATH`), picks Composer 1 or 2
  from `composer.lock`, downloads a signature-checked copy when none is
  found, and runs it.
- `phplocal.platformsh` installs the Platform.sh CLI when it is missing
  or was installed for an older internal version.
- `phplocal.fpm` and `phplocal.router` produce the PHP-FPM
  configuration and the router script for PHP's built-in web server.
- `phplocal.server` builds the CGI environment for a request and
  prepares the command line of a PHP-FPM, PHP-CGI or built-in server.
- `phplocal.pidfile` keeps track of servers and workers in JSON pid
  files, with their log files.

## Installation

```
pip install phplocal
```

## Describing a PHP installation

The package does not discover installed PHP versions. You describe the
one to use with `PhpVersion`:

```python
from phplocal.executor import PhpVersion

version = PhpVersion(
    version="8.2.0",
    php_path="/usr/bin/php8.2",
    fpm_path="/usr/sbin/php-fpm8.2",
    php_config_path="/usr/bin/php-config8.2",
    phpize_path="/usr/bin/phpize8.2",
)
```

## Running PHP

```python
from phplocal.executor import Executor, detect_script_dir, is_binary_name

is_binary_name("php-fpm")                                     # True
detect_script_dir(["-d", "memory_limit=-1", "bin/console"])   # absolute path of bin/

executor = Executor(args=["php", "bin/console", "about"], version=version, home_dir=home_dir)
exit_code = executor.execute()
```

`Executor.config()` raises `ExecutorError` when the requested binary is
not part of the version. `execute()` prints that error and returns 1
instead. A `php.ini` found in the script directory or one of its parents
is added to `PHP_INI_SCAN_DIR`; `paths_to_watch()` returns it. With
`in_cloud=True` no binary lookup is made and `args[0]` becomes the bare
binary name.

`look_path(file, version)` looks next to the PHP binary first, then on
`PATH`, and returns `None` when nothing is found.

## Running Composer

```python
from phplocal.composer import composer_version, is_php_script, run_composer

composer_version(".")          # 1 or 2, from composer.lock (2 by default)
is_php_script("/usr/local/bin/composer")   # True for a file starting with a php shebang

result = run_composer(".", ["install"], version=version, home_dir=home_dir)
result.exit_code
result.raise_for_error()       # raises ComposerError when the run failed
```

`COMPOSER_MEMORY_LIMIT=-1` is set unless the variable is already
defined. When no Composer is found, one is downloaded into
`<home_dir>/composer/` and its installer signature checked.
`find_composer` raises `FileNotFoundError` when nothing is installed.

## Installing the Platform.sh CLI

```python
from phplocal.platformsh import install_platform_phar, needs_install

if needs_install(home):
    install_platform_phar(home, version)
```

Failures raise `PlatformInstallError` with the installer's output.

## PHP-FPM configuration and router script

```python
from phplocal.fpm import fpm_config, fpm_config_file
from phplocal.router import php_router_file, router_script

print(fpm_config("8.2.0", ":9000", debug=False, user_config=""))
```

An address that starts with `:` listens on `127.0.0.1`. From PHP 7.3
on, `decorate_workers_output = no` and `log_limit = 8192` are added.
When `user_config` is left out and the process runs as root,
`fpm_user_config()` picks a user and group for the workers.

## Request environments and server commands

```python
from phplocal.server import Server, ServerRequest, addslashes

addslashes("foo'bar")   # "foo\\'bar"

server = Server(version, home_dir, "/path/to/project", "/path/to/project/public/", "/index.php")
env = server.generate_env(ServerRequest.from_uri("/index.php/foo?a=b"))
env["SCRIPT_NAME"], env["PATH_INFO"], env["QUERY_STRING"]   # "/index.php", "/foo", "a=b"

command = server.prepare(port=9000)
command.args, command.worker_name
```

`generate_env` uses an existing `.php` file under the document root as
the script, and the front controller (`passthru`) otherwise; request
headers become `HTTP_*` variables, except `Host`. `prepare` writes the
FPM configuration or the router script and returns a `ServerCommand`,
whose `executor(...)` builds the `Executor` to start it and whose
`cleanup()` removes the written files. `write_env_file` writes the
per-request environment the router script loads.

## Pid files

```python
from phplocal.pidfile import all_workers, new_pidfile, to_configured_projects

pid = new_pidfile(home_dir, "/path/to/project", ["php", "-S", "127.0.0.1:8000"])
pid.write(12345, 8000, "http")
pid.is_running()
all_workers(home_dir, "/path/to/project")
to_configured_projects(home_dir)   # {"~/project": ConfiguredProject(port=..., scheme=...)}
pid.stop()
```

Pid files whose process no longer runs are removed when they are listed.
`wait_for_pid` and `wait_for_logs` poll until the file appears and raise
`TimeoutError` after the given number of seconds.

## What this package does not do

There is no command-line tool and no HTTP front end: the package does not
listen for requests, speak FastCGI to PHP-FPM or PHP-CGI, proxy to the
built-in server, or restart PHP processes when they exit or when
`php.ini` changes. `Server.prepare` only describes the process to start;
starting it, supervising it and routing requests to it are up to the
caller. PHP versions are not discovered: they are passed in as
`PhpVersion`.
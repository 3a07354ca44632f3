import os

import pytest

from phplocal.executor import PhpVersion
from phplocal.router import router_script
from phplocal.server import (
    Server,
    ServerError,
    ServerRequest,
    addslashes,
    name,
    render_env_file,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("foo", "foo"),
        ("foo'bar", "foo\\'bar"),
        ('foo"bar', 'foo"bar'),
        ("foo\\bar", "foo\\\\bar"),
        ('"hello"', '"hello"'),
    ],
)
def test_addslashes(value, expected):
    assert addslashes(value) == expected


def test_name_is_sha1_hex():
    assert name("") == "da39a3ee5e6b4b0d3255bfef95601890afd80709"


def test_render_env_file_escapes():
    assert render_env_file({"A": "it's"}) == "<?php $_ENV['A'] = 'it\\'s';\n"


@pytest.fixture
def project_tree(tmp_path, monkeypatch):
    public = tmp_path / "testdata" / "public"
    (public / "js").mkdir(parents=True)
    for file in ("index.php", "app.PHP", "update.php", "js/whitelist.php"):
        (public / file).write_text("<?php\n")
    monkeypatch.chdir(tmp_path)
    return "testdata"


def _server(project_dir, passthru="/index.php", home="home"):
    return Server(
        version=PhpVersion(version="8.1.0", php_path="/usr/bin/php"),
        home_dir=home,
        project_dir=project_dir,
        document_root=project_dir + "/public/",
        passthru=passthru,
    )


GENERATE_ENV_CASES = [
    ("/index.php", "/", "/", "", "/public/index.php", "/index.php"),
    ("/index.php", "/?foo=bar", "/", "foo=bar", "/public/index.php", "/index.php"),
    ("/index.php", "/index.php", "", "", "/public/index.php", "/index.php"),
    ("/index.php", "/index.php/foo", "/foo", "", "/public/index.php", "/index.php"),
    ("/app.PHP", "/app.PHP/foo", "/foo", "", "/public/app.PHP", "/app.PHP"),
    ("/index.php", "/index.php/foo?foo=bar", "/foo", "foo=bar", "/public/index.php", "/index.php"),
    ("/index.php", "/foo", "/foo", "", "/public/index.php", "/index.php"),
    ("/index.php", "/update.php", "", "", "/public/update.php", "/update.php"),
    ("/index.php", "/js/whitelist.php", "", "", "/public/js/whitelist.php", "/js/whitelist.php"),
    ("/index.php", "/unknown.php", "/unknown.php", "", "/public/index.php", "/index.php"),
    ("/index.php", "/unknown.php/foo", "/unknown.php/foo", "", "/public/index.php", "/index.php"),
    ("/index.php", "/unknown.PHP/foo", "/unknown.PHP/foo", "", "/public/index.php", "/index.php"),
]


@pytest.mark.parametrize(
    ("passthru", "uri", "path_info", "query", "script_file", "script_name"),
    GENERATE_ENV_CASES,
)
def test_generate_env(project_tree, passthru, uri, path_info, query, script_file, script_name):
    env = _server(project_tree, passthru).generate_env(ServerRequest.from_uri(uri))
    assert env["PATH_INFO"] == path_info
    assert env["REQUEST_URI"] == uri
    assert env["QUERY_STRING"] == query
    assert env["SCRIPT_FILENAME"] == os.path.normpath(project_tree + script_file)
    assert env["SCRIPT_NAME"] == script_name


def test_generate_env_remote_and_headers(project_tree):
    request = ServerRequest.from_uri(
        "/",
        headers={"Host": ["evil"], "X-Foo-Bar": ["a", "b"], "Content-Type": ["text/plain"]},
        remote_addr="10.0.0.1:4567",
        tls=True,
        host="localhost:8000",
    )
    env = _server(project_tree).generate_env(request)
    assert env["REMOTE_ADDR"] == "10.0.0.1"
    assert env["REMOTE_PORT"] == "4567"
    assert env["HTTPS"] == "On"
    assert env["HTTP_HOST"] == "localhost:8000"
    assert env["HTTP_X_FOO_BAR"] == "a;b"
    assert env["CONTENT_TYPE"] == "text/plain"
    assert env["GATEWAY_INTERFACE"] == "CGI/1.1"


def test_generate_env_client_ip_header(project_tree):
    request = ServerRequest.from_uri("/", headers={"X-Client-IP": ["1.2.3.4"]}, remote_addr="[::1]:80")
    env = _server(project_tree).generate_env(request)
    assert env["REMOTE_ADDR"] == "1.2.3.4"
    assert env["REMOTE_PORT"] == ""


def test_generate_env_local_env_merged(project_tree):
    server = _server(project_tree)
    server.local_env = {"APP_ENV": "dev"}
    assert server.generate_env(ServerRequest.from_uri("/"))["APP_ENV"] == "dev"


def test_write_env_file(tmp_path):
    server = _server("project", home=str(tmp_path))
    path = server.write_env_file("abc", {"K": "v"})
    assert path == server.php_router_file() + "-abc-env"
    with open(path, encoding="utf-8") as file:
        assert file.read() == "<?php $_ENV['K'] = 'v';\n"


def test_write_env_file_without_passthru(tmp_path):
    server = _server("project", passthru="", home=str(tmp_path))
    with pytest.raises(ServerError, match="front controller"):
        server.write_env_file("abc", {})


def test_prepare_fpm(tmp_path):
    server = Server(
        version=PhpVersion(version="8.1.0", php_path="/usr/bin/php", fpm_path="/usr/sbin/php-fpm"),
        home_dir=str(tmp_path),
        project_dir="/project",
        document_root="/project/public",
        passthru="/index.php",
    )
    command = server.prepare(9000)
    assert server.addr == ":9000"
    assert command.bin_name == "php-fpm"
    assert command.worker_name == "PHP-FPM"
    config = server.fpm_config_file()
    assert command.args == ["/usr/sbin/php-fpm", "--nodaemonize", "--fpm-config", config, "--force-stderr"]
    with open(config, encoding="utf-8") as file:
        assert "listen = 127.0.0.1:9000" in file.read()
    command.cleanup()
    assert not os.path.exists(config)


def test_prepare_fpm_old_version_has_no_force_stderr(tmp_path):
    server = Server(
        version=PhpVersion(version="5.6.40", php_path="/usr/bin/php", fpm_path="/usr/sbin/php-fpm"),
        home_dir=str(tmp_path),
        project_dir="/project",
        document_root="/project/public",
        passthru="/index.php",
    )
    assert "--force-stderr" not in server.prepare(9001).args


def test_prepare_cgi(tmp_path):
    server = Server(
        version=PhpVersion(version="8.2.0", php_path="/usr/bin/php", cgi_path="/usr/bin/php-cgi"),
        home_dir=str(tmp_path),
        project_dir="/project",
        document_root="/project/public",
        passthru="/index.php",
    )
    command = server.prepare(9100, log_file="/tmp/log")
    assert command.bin_name == "php-cgi"
    assert command.args[:4] == ["/usr/bin/php-cgi", "-b", "9100", "-d"]
    assert command.args[4].startswith("error_log=")
    assert command.paths_to_remove == []


def test_prepare_cli(tmp_path):
    server = _server("/project", home=str(tmp_path))
    command = server.prepare(9200)
    router = server.php_router_file()
    assert command.bin_name == "php"
    assert command.worker_name == "PHP"
    assert command.args == ["/usr/bin/php", "-S", "127.0.0.1:9200", "-d", "variables_order=EGPCS", router]
    assert command.env == {"APP_FRONT_CONTROLLER": "index.php"}
    assert command.proxy_target == "http://127.0.0.1:9200"
    with open(router, "rb") as file:
        assert file.read() == router_script()


def test_command_executor(tmp_path):
    server = _server("/project", home=str(tmp_path))
    command = server.prepare(9300)
    executor = command.executor(server.version, str(tmp_path), "/project")
    assert executor.bin_name == "php"
    assert executor.script_dir == "/project"
    assert executor.extra_env == {"APP_FRONT_CONTROLLER": "index.php"}
    assert executor.args == command.args
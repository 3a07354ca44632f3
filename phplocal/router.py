"""Router script for PHP's built-in web server."""

from __future__ import annotations

import os

from phplocal.pidfile import hash_name

_ROUTER = b"""<?php
// The built-in server does not load auto_prepend_file for router scripts.
$prepend = ini_get('auto_prepend_file');
if ($prepend && !in_array(realpath($prepend), get_included_files(), true)) {
    require $prepend;
}

$requestIdKey = 'HTTP___SYMFONY_LOCAL_REQUEST_ID__';
if (isset($_SERVER[$requestIdKey])) {
    $envFile = __FILE__ . '-' . $_SERVER[$requestIdKey] . '-env';
    if (file_exists($envFile)) {
        require $envFile;
    }
    unset($_SERVER[$requestIdKey]);
}

$requested = $_SERVER['DOCUMENT_ROOT'] . DIRECTORY_SEPARATOR . $_SERVER['SCRIPT_NAME'];
if (is_file($requested)) {
    return false;
}

$frontController = $_ENV['APP_FRONT_CONTROLLER'];
$_SERVER = array_merge($_SERVER, $_ENV);
$_SERVER['SCRIPT_FILENAME'] = $_SERVER['DOCUMENT_ROOT'] . DIRECTORY_SEPARATOR . $frontController;
$_SERVER['SCRIPT_NAME'] = DIRECTORY_SEPARATOR . $frontController;
$_SERVER['PHP_SELF'] = $_SERVER['SCRIPT_NAME'];
unset($prepend, $requestIdKey, $requested);

require $frontController;
"""


def router_script() -> bytes:
    """PHP router that serves static files and forwards the rest to the front controller."""
    return _ROUTER


def php_router_file(home_dir: str, project_dir: str) -> str:
    """Path of the router script for a project; its directory is created."""
    path = os.path.join(home_dir, "php", f"{hash_name(project_dir)}-router.php")
    os.makedirs(os.path.dirname(path), mode=0o755, exist_ok=True)
    return path
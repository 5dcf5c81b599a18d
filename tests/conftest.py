"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"
TEST_USERS = {"user": "password"}


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    directory: Path
    config_file: Path
    process: subprocess.Popen[str]
    log_file: Path


def write_config(path: Path, **settings: Any) -> Path:
    """Write a JSON configuration file for the server."""
    path.write_text(json.dumps(settings), encoding="utf-8")
    return path


def server_command(
    config_file: Path,
    host: str,
    port: int,
    log_file: Path,
    extra_args: list[str] | None = None,
) -> list[str]:
    """Build the command line that launches the server entry point."""
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--config-file",
        str(config_file),
        "--listen-address",
        f"{host}:{port}",
        "--log-destination",
        str(log_file),
    ]
    if extra_args:
        args.extend(extra_args)
    return args


def launch_server(
    workspace: Path,
    extra_args: list[str] | None = None,
    scheme: str = "http",
    **settings: Any,
) -> Generator[ServerProcessInfo, None, None]:
    """Start the server against ``workspace/blobs`` and stop it afterwards."""
    host = "127.0.0.1"
    port = reserve_port(host)
    directory = workspace / "blobs"
    directory.mkdir(exist_ok=True)
    log_file = workspace / "server.log"
    config_file = write_config(
        workspace / "config.json", blobs_path=str(directory), **settings
    )

    with subprocess.Popen(
        server_command(config_file, host, port, log_file, extra_args),
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            if log_file.exists():
                print(f"\nServer log:\n{log_file.read_text()}")
            raise

        yield {
            "base_url": f"{scheme}://{host}:{port}",
            "host": host,
            "port": port,
            "directory": directory,
            "config_file": config_file,
            "process": process,
            "log_file": log_file,
        }

        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Public-read server with one configured user."""

    workspace = tmp_path_factory.mktemp("blobstore")
    yield from launch_server(workspace, public_read=True, users=TEST_USERS)


@pytest.fixture(name="private_server_process")
def _private_server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Server that requires credentials for every request."""

    workspace = tmp_path_factory.mktemp("blobstore-private")
    yield from launch_server(workspace, public_read=False, users=TEST_USERS)


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]


@pytest.fixture()
def auth() -> tuple[str, str]:
    """Credentials accepted by the fixture servers."""

    return ("user", TEST_USERS["user"])

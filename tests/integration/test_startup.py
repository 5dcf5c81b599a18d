"""Integration tests for startup configuration failures."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from tests.conftest import PROJECT_ROOT, server_command, write_config
from tests.utils.http import reserve_port

pytestmark = pytest.mark.integration


def _run_to_exit(config_file: Path, log_file: Path) -> int:
    port = reserve_port()
    completed = subprocess.run(
        server_command(config_file, "127.0.0.1", port, log_file),
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        timeout=10,
        check=False,
    )
    return completed.returncode


def _critical_messages(log_file: Path) -> list[str]:
    records = [json.loads(line) for line in log_file.read_text().splitlines()]
    return [record["message"] for record in records if record["level"] == "CRITICAL"]


def test_missing_config_file(tmp_path: Path) -> None:
    """A config file that cannot be opened is fatal."""
    log_file = tmp_path / "server.log"

    assert _run_to_exit(tmp_path / "absent.json", log_file) == 1
    messages = _critical_messages(log_file)
    assert len(messages) == 1
    assert messages[0].startswith("failed to load config data")


def test_invalid_json_config(tmp_path: Path) -> None:
    """Unparseable JSON is fatal."""
    config_file = tmp_path / "config.json"
    config_file.write_text("!!invalid-json!!", encoding="utf-8")
    log_file = tmp_path / "server.log"

    assert _run_to_exit(config_file, log_file) == 1
    assert _critical_messages(log_file)[0].startswith("failed to load config data")


def test_missing_blobs_path(tmp_path: Path) -> None:
    """A configuration without a blobs path is fatal."""
    config_file = write_config(tmp_path / "config.json", public_read=True)
    log_file = tmp_path / "server.log"

    assert _run_to_exit(config_file, log_file) == 1
    assert _critical_messages(log_file) == ["blobs path is required"]


def test_unreadable_certificate(tmp_path: Path) -> None:
    """Configured TLS files that cannot be loaded are fatal."""
    config_file = write_config(
        tmp_path / "config.json",
        blobs_path=str(tmp_path),
        cert_file=str(tmp_path / "missing.pem"),
        key_file=str(tmp_path / "missing.key"),
    )
    log_file = tmp_path / "server.log"

    assert _run_to_exit(config_file, log_file) == 1
    assert _critical_messages(log_file)[0].startswith("failed to load TLS certificates")


def test_invalid_listen_address(tmp_path: Path) -> None:
    """An unusable listen address is reported like other configuration errors."""
    config_file = write_config(tmp_path / "config.json", blobs_path=str(tmp_path))
    log_file = tmp_path / "server.log"
    command = server_command(config_file, "127.0.0.1", 0, log_file)
    command[command.index("--listen-address") + 1] = "no-port-here"

    completed = subprocess.run(
        command, cwd=PROJECT_ROOT, capture_output=True, timeout=10, check=False
    )

    assert completed.returncode == 1
    assert _critical_messages(log_file)[0].startswith("failed to load config data")

"""Integration tests for the Basic credential gate."""

from typing import TYPE_CHECKING

import pytest
import requests

if TYPE_CHECKING:
    from tests.conftest import ServerProcessInfo

pytestmark = pytest.mark.integration


def test_public_read_serves_anonymous_get(
    server_process: "ServerProcessInfo",
) -> None:
    """With public reads on, anyone can fetch a blob."""
    config_contents = server_process["config_file"].read_bytes()
    (server_process["directory"] / "config.json").write_bytes(config_contents)

    response = requests.get(f"{server_process['base_url']}/config.json", timeout=5)

    assert response.status_code == 200
    assert response.content == config_contents


@pytest.mark.parametrize("method", ["PUT", "DELETE", "POST"])
def test_public_read_requires_authentication_for_writes(
    base_url: str, method: str
) -> None:
    """Anything but a read needs credentials even on a public server."""
    response = requests.request(method, f"{base_url}/config.json", timeout=5)

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == 'Basic realm="blobstore"'


def test_wrong_password_is_forbidden(
    base_url: str, server_process: "ServerProcessInfo"
) -> None:
    """Mismatched credentials are 403 and nothing is written."""
    response = requests.put(
        f"{base_url}/denied.txt", data=b"x", auth=("user", "nope"), timeout=5
    )

    assert response.status_code == 403
    assert not (server_process["directory"] / "denied.txt").exists()


def test_unknown_user_is_forbidden(base_url: str) -> None:
    """Users absent from the configuration are denied."""
    response = requests.delete(f"{base_url}/x", auth=("mallory", ""), timeout=5)
    assert response.status_code == 403


def test_private_server_requires_authentication_for_reads(
    private_server_process: "ServerProcessInfo",
) -> None:
    """Without public reads, GET and HEAD are challenged too."""
    base_url = private_server_process["base_url"]
    (private_server_process["directory"] / "secret.txt").write_bytes(b"classified")

    assert requests.get(f"{base_url}/secret.txt", timeout=5).status_code == 401
    assert requests.head(f"{base_url}/secret.txt", timeout=5).status_code == 401


def test_private_server_allows_authenticated_reads(
    private_server_process: "ServerProcessInfo", auth: tuple[str, str]
) -> None:
    """Valid credentials unlock reads on a private server."""
    base_url = private_server_process["base_url"]
    (private_server_process["directory"] / "secret.txt").write_bytes(b"classified")

    response = requests.get(f"{base_url}/secret.txt", auth=auth, timeout=5)

    assert response.status_code == 200
    assert response.content == b"classified"


def test_private_server_rejects_bad_credentials_on_reads(
    private_server_process: "ServerProcessInfo",
) -> None:
    """Wrong credentials on a read are 403, not 401."""
    base_url = private_server_process["base_url"]

    response = requests.get(f"{base_url}/secret.txt", auth=("user", "bad"), timeout=5)

    assert response.status_code == 403


def test_rejected_upload_keeps_connection_usable(
    server_process: "ServerProcessInfo", auth: tuple[str, str]
) -> None:
    """An unread payload from a rejected PUT does not break keep-alive."""
    with requests.Session() as session:
        rejected = session.put(
            f"{server_process['base_url']}/a.txt", data=b"x" * 4096, timeout=5
        )
        accepted = session.put(
            f"{server_process['base_url']}/a.txt", data=b"ok", auth=auth, timeout=5
        )

    assert rejected.status_code == 401
    assert accepted.status_code == 201
    assert (server_process["directory"] / "a.txt").read_bytes() == b"ok"

from __future__ import annotations

import time

import pytest
from starlette.testclient import TestClient

from html2exe.core import BuildCoordinator
from html2exe.server import create_app


def _client(settings, runner) -> TestClient:
    coordinator = BuildCoordinator(settings, runner=runner)
    return TestClient(create_app(settings, coordinator=coordinator))


def _wait_terminal(client: TestClient, build_id: str, timeout: float = 15.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/status/{build_id}").json()
        if body["phase"] in {"completed", "failed"}:
            return body
        time.sleep(0.05)
    raise AssertionError(f"build {build_id} did not finish")


def test_health(settings, fake_runner) -> None:
    with _client(settings, fake_runner) as client:
        response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "OK"
    assert "timestamp" in response.json()


@pytest.mark.timeout(30)
def test_convert_status_download(settings, fake_runner, demo_zip) -> None:
    with _client(settings, fake_runner) as client:
        response = client.post(
            "/api/convert",
            files={"zipFile": ("site.zip", demo_zip, "application/zip")},
            data={"appName": "Demo", "width": "1024", "height": "", "company": "ACME"},
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["success"] is True
        build_id = body["buildId"]
        assert body["statusUrl"] == f"/api/status/{build_id}"
        assert body["downloadUrl"] == f"/api/download/{build_id}"

        final = _wait_terminal(client, build_id)
        assert final["phase"] == "completed", final
        assert final["downloadUrl"] == body["downloadUrl"]
        assert {"createdAt", "updatedAt", "description"} <= set(final)

        download = client.get(body["downloadUrl"])
        assert download.status_code == 200
        assert download.content == b"MZ fake executable"
        assert 'filename="demo.exe"' in download.headers["content-disposition"]


@pytest.mark.timeout(30)
def test_failed_build_reports_error(settings, fake_runner, make_zip) -> None:
    archive = make_zip({"index.html": "<html></html>", "run.bat": "del *"})
    with _client(settings, fake_runner) as client:
        build_id = client.post(
            "/api/convert", files={"zipFile": ("site.zip", archive, "application/zip")}
        ).json()["buildId"]

        final = _wait_terminal(client, build_id)
        download = client.get(f"/api/download/{build_id}")

    assert final["phase"] == "failed"
    assert "run.bat" in final["error"]
    assert download.status_code == 404


def test_unknown_build(settings, fake_runner) -> None:
    with _client(settings, fake_runner) as client:
        status = client.get("/api/status/does-not-exist")
        download = client.get("/api/download/does-not-exist")

    assert status.status_code == 404
    assert status.json() == {"buildId": "does-not-exist", "phase": "not_found"}
    assert download.status_code == 404


@pytest.mark.parametrize(
    "files, data, expected",
    [
        ({}, {"appName": "Demo"}, "No zip file uploaded"),
        ({"zipFile": ("notes.txt", b"hello", "text/plain")}, {}, "Only ZIP files"),
        (
            {
                "zipFile": ("site.zip", b"PK\x03\x04", "application/zip"),
                "iconFile": ("icon.gif", b"GIF89a", "image/gif"),
            },
            {},
            "Icon rejected",
        ),
        (
            {"zipFile": ("site.zip", b"PK\x03\x04", "application/zip")},
            {"width": "50"},
            "width",
        ),
    ],
)
def test_convert_rejects_bad_input(settings, fake_runner, files, data, expected) -> None:
    with _client(settings, fake_runner) as client:
        response = client.post("/api/convert", files=files or None, data=data)

    assert response.status_code == 400
    assert expected in response.json()["error"]
    assert fake_runner.invocations == []


def test_oversized_upload_is_413(settings, fake_runner) -> None:
    small = settings.model_copy(update={"max_archive_bytes": 1024})
    with _client(small, fake_runner) as client:
        response = client.post(
            "/api/convert",
            files={"zipFile": ("site.zip", b"PK\x03\x04" + b"0" * 4096, "application/zip")},
        )

    assert response.status_code == 413


@pytest.mark.timeout(30)
def test_tampered_artifact_is_not_served(settings, fake_runner, demo_zip) -> None:
    with _client(settings, fake_runner) as client:
        build_id = client.post(
            "/api/convert", files={"zipFile": ("site.zip", demo_zip, "application/zip")}
        ).json()["buildId"]
        assert _wait_terminal(client, build_id)["phase"] == "completed"

        artifact = next((settings.dist_root / build_id).glob("*.exe"))
        artifact.write_bytes(b"tampered")
        response = client.get(f"/api/download/{build_id}")

    assert response.status_code == 500

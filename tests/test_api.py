# tests/test_api.py

import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from chunked_upload.main import create_app
from tests.fakes import signed_session_cookie


def init(client: TestClient, filename: str, file_size: int, chunk_size: int) -> dict:
    response = client.post(
        "/api/upload/chunk/init",
        json={"filename": filename, "fileSize": file_size, "chunkSize": chunk_size},
    )
    assert response.status_code == 200, response.text
    return response.json()


def send_chunk(client: TestClient, upload_id: str, index: int, data: bytes, total=None):
    form = {"uploadId": upload_id, "chunkIndex": str(index)}
    if total is not None:
        form["totalChunks"] = str(total)
    return client.post(
        "/api/upload/chunk/upload",
        data=form,
        files={"chunk": (f"chunk_{index}", data, "application/octet-stream")},
    )


def merge(client: TestClient, upload_id: str, filename: str):
    return client.post("/api/upload/chunk/merge", json={"uploadId": upload_id, "filename": filename})


def test_health(alice: TestClient) -> None:
    assert alice.get("/health").json() == {"status": "healthy"}


def test_full_upload_in_reverse_order(alice: TestClient, settings) -> None:
    data = os.urandom(10_000_000)
    chunk_size = 1_000_000

    session = init(alice, "a.bin", len(data), chunk_size)
    assert session["totalChunks"] == 10
    assert session["chunkSize"] == chunk_size
    upload_id = session["uploadId"]

    def send(index: int):
        part = data[index * chunk_size:(index + 1) * chunk_size]
        return send_chunk(alice, upload_id, index, part, total=10)

    with ThreadPoolExecutor(max_workers=3) as executor:
        responses = list(executor.map(send, reversed(range(10))))
    assert all(r.status_code == 200 for r in responses)
    assert max(r.json()["uploadedChunks"] for r in responses) == 10

    response = merge(alice, upload_id, "a.bin")
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["size"] == len(data)
    assert body["originalName"] == "a.bin"
    assert body["filename"].startswith("chunk_") and body["filename"].endswith(".bin")
    assert body["url"] == f"/uploads/files/{body['filename']}"
    assert body["uploadTime"] >= 0
    assert "uploadDate" in body

    assert (Path(settings.PUBLIC_UPLOAD_DIR) / body["filename"]).read_bytes() == data
    downloaded = alice.get(body["url"])
    assert downloaded.status_code == 200
    assert downloaded.content == data

    # The session and its staging directory are gone
    assert alice.get(f"/api/upload/chunk/{upload_id}").status_code == 404
    assert not (Path(settings.TEMP_UPLOAD_DIR) / upload_id).exists()
    assert merge(alice, upload_id, "a.bin").status_code == 404


def test_merge_with_missing_chunk(alice: TestClient, settings) -> None:
    session = init(alice, "a.bin", 100, 10)
    upload_id = session["uploadId"]
    for index in range(9):
        assert send_chunk(alice, upload_id, index, b"x" * 10).status_code == 200

    response = merge(alice, upload_id, "a.bin")

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "INCOMPLETE_UPLOAD"
    assert body["missingChunks"] == [9]
    assert list(Path(settings.PUBLIC_UPLOAD_DIR).iterdir()) == []

    status = alice.get(f"/api/upload/chunk/{upload_id}").json()
    assert status["uploadedChunks"] == 9
    assert status["missingChunks"] == [9]
    assert status["state"] == "uploading"
    assert status["progressPercent"] == 90.0


def test_duplicate_chunk_counts_once(alice: TestClient) -> None:
    upload_id = init(alice, "a.bin", 20, 10)["uploadId"]

    first = send_chunk(alice, upload_id, 0, b"a" * 10).json()
    second = send_chunk(alice, upload_id, 0, b"b" * 10).json()

    assert first == {"chunkIndex": 0, "uploadedChunks": 1, "totalChunks": 2}
    assert second["uploadedChunks"] == 1


def test_other_user_is_forbidden(alice: TestClient, bob: TestClient) -> None:
    upload_id = init(alice, "a.bin", 10, 10)["uploadId"]

    response = send_chunk(bob, upload_id, 0, b"x" * 10)
    assert response.status_code == 403
    assert response.json()["error"] == "FORBIDDEN"

    assert send_chunk(alice, upload_id, 0, b"x" * 10).status_code == 200
    assert merge(bob, upload_id, "a.bin").status_code == 403
    assert bob.get(f"/api/upload/chunk/{upload_id}").status_code == 403
    assert bob.delete(f"/api/upload/chunk/{upload_id}").status_code == 403

    assert merge(alice, upload_id, "a.bin").status_code == 200


def test_unauthenticated_requests_are_rejected(client_for) -> None:
    anonymous = client_for(None)

    response = anonymous.post(
        "/api/upload/chunk/init", json={"filename": "a.bin", "fileSize": 10, "chunkSize": 10}
    )
    assert response.status_code == 401
    assert anonymous.get("/api/upload/files").status_code == 401


@pytest.mark.parametrize(
    "body",
    [
        {"fileSize": 10, "chunkSize": 10},
        {"filename": "a.bin", "chunkSize": 10},
        {"filename": "a.bin", "fileSize": 10},
        {"filename": "a.bin", "fileSize": 0, "chunkSize": 10},
        {"filename": "a.bin", "fileSize": 10, "chunkSize": -1},
        {"filename": "", "fileSize": 10, "chunkSize": 10},
    ],
)
def test_init_rejects_bad_parameters(alice: TestClient, body) -> None:
    response = alice.post("/api/upload/chunk/init", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_ARGUMENT"


def test_upload_rejects_bad_parameters(alice: TestClient) -> None:
    upload_id = init(alice, "a.bin", 20, 10)["uploadId"]

    missing_chunk = alice.post("/api/upload/chunk/upload", data={"uploadId": upload_id, "chunkIndex": "0"})
    assert missing_chunk.status_code == 400

    missing_index = alice.post(
        "/api/upload/chunk/upload",
        data={"uploadId": upload_id},
        files={"chunk": ("c", b"x", "application/octet-stream")},
    )
    assert missing_index.status_code == 400

    assert send_chunk(alice, upload_id, 2, b"x").status_code == 400
    assert send_chunk(alice, upload_id, 0, b"x", total=5).status_code == 400
    assert send_chunk(alice, upload_id, 0, b"x" * 11).status_code == 400
    assert send_chunk(alice, "upload_unknown", 0, b"x").status_code == 404


def test_merge_rejects_missing_fields(alice: TestClient) -> None:
    assert alice.post("/api/upload/chunk/merge", json={"filename": "a.bin"}).status_code == 400
    assert alice.post("/api/upload/chunk/merge", json={"uploadId": "", "filename": "a.bin"}).status_code == 400


def test_sessions_cancel_and_files(alice: TestClient, bob: TestClient, settings) -> None:
    kept = init(alice, "kept.txt", 5, 5)["uploadId"]
    dropped = init(alice, "dropped.bin", 10, 5)["uploadId"]
    init(bob, "bob.bin", 10, 5)
    send_chunk(alice, dropped, 0, b"12345")

    listing = alice.get("/api/upload/chunk/sessions").json()
    assert listing["total"] == 2
    assert {s["uploadId"] for s in listing["sessions"]} == {kept, dropped}
    progress = {s["uploadId"]: s["progress"] for s in listing["sessions"]}
    assert progress[dropped] == "1/2"

    response = alice.delete(f"/api/upload/chunk/{dropped}")
    assert response.json() == {"uploadId": dropped, "status": "cancelled"}
    assert not (Path(settings.TEMP_UPLOAD_DIR) / dropped).exists()
    assert alice.delete(f"/api/upload/chunk/{dropped}").status_code == 404

    send_chunk(alice, kept, 0, b"hello")
    merged = merge(alice, kept, "kept.txt").json()

    files = alice.get("/api/upload/files").json()
    assert files["total"] == 1
    assert files["files"][0]["filename"] == merged["filename"]
    assert files["files"][0]["mimeType"] == "text/plain"
    assert files["files"][0]["size"] == 5


def test_cookie_session_identifies_the_owner(settings) -> None:
    app = create_app(settings)
    alice = TestClient(app)
    alice.cookies.set(settings.SESSION_COOKIE, signed_session_cookie(settings.SESSION_SECRET, {"user_id": 1}))
    bob = TestClient(app)
    bob.cookies.set(settings.SESSION_COOKIE, signed_session_cookie(settings.SESSION_SECRET, {"user_id": 2}))
    forged = TestClient(app)
    forged.cookies.set(settings.SESSION_COOKIE, signed_session_cookie("wrong-secret", {"user_id": 1}))

    upload_id = init(alice, "a.bin", 3, 3)["uploadId"]

    assert send_chunk(bob, upload_id, 0, b"abc").status_code == 403
    assert send_chunk(forged, upload_id, 0, b"abc").status_code == 401
    assert TestClient(app).get(f"/api/upload/chunk/{upload_id}").status_code == 401
    assert send_chunk(alice, upload_id, 0, b"abc").status_code == 200
    assert merge(alice, upload_id, "a.bin").status_code == 200


def test_sql_backend_end_to_end(settings) -> None:
    settings.REGISTRY_BACKEND = "sql"
    data = os.urandom(2500)

    with TestClient(create_app(settings)) as client:
        client.cookies.set(settings.SESSION_COOKIE, signed_session_cookie(settings.SESSION_SECRET, {"user_id": "alice"}))
        upload_id = init(client, "a.bin", len(data), 1000)["uploadId"]
        for index in (2, 0, 1):
            assert send_chunk(client, upload_id, index, data[index * 1000:(index + 1) * 1000]).status_code == 200
        body = merge(client, upload_id, "a.bin").json()

    assert (Path(settings.PUBLIC_UPLOAD_DIR) / body["filename"]).read_bytes() == data


def test_chunk_body_over_server_limit_is_rejected(settings) -> None:
    settings.MAX_CHUNK_SIZE = 1024
    client = TestClient(create_app(settings))
    client.cookies.set(settings.SESSION_COOKIE, signed_session_cookie(settings.SESSION_SECRET, {"user_id": "alice"}))
    session = init(client, "a.bin", 4096, 1024)

    response = send_chunk(client, session["uploadId"], 0, os.urandom(64 * 1024))

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "INVALID_ARGUMENT"
    assert body["maxChunkSize"] == 1024
    assert list((Path(settings.TEMP_UPLOAD_DIR) / session["uploadId"]).iterdir()) == []
    assert client.get(f"/api/upload/chunk/{session['uploadId']}").json()["uploadedChunks"] == 0

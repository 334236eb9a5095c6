from __future__ import annotations

import io
import json
import zipfile

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from summary_hub.web import create_app
from summary_hub.web.server import SESSION_COOKIE_NAME

from conftest import ADMIN_PASSWORD, RecordingNotifier


METADATA = {
    "courseName": "Algo",
    "title": "Midterm",
    "authorHandle": "stu1",
    "schoolYearLabel": "2025-2026",
}


@pytest.fixture()
def recording_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def client(temp_config, recording_notifier):
    app = create_app(temp_config, notifier=recording_notifier)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def admin_client(client):
    response = client.post("/admin/login", json={"password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return client


def _upload_pdf(client, name="notes.pdf", payload=b"%PDF-1.4 body", **fields):
    data = dict(METADATA, **fields)
    return client.post(
        "/upload",
        data=data,
        files={"file": (name, payload, "application/pdf")},
    )


def _stored(config):
    return json.loads(config.records_file.read_text(encoding="utf-8"))


def test_single_pdf_upload_is_listed_and_downloadable(client, temp_config) -> None:
    response = _upload_pdf(client)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Summary added by stu1: Midterm"
    record = body["file"]
    assert record["kind"] == "document"
    assert "voterChoices" not in record

    listing = client.get("/get-files").json()
    assert [item["id"] for item in listing] == [record["id"]]

    download = client.get(listing[0]["downloadUrl"])
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 body"
    assert list(temp_config.incoming_root.iterdir()) == []


def test_legacy_file_field_name_is_accepted(client) -> None:
    response = client.post(
        "/upload",
        data={"cours": "Algo", "titre": "Old form", "nomDiscord": "stu1", "schoolYearLabel": "2025"},
        files={"fichier": ("old.pdf", b"%PDF", "application/pdf")},
    )

    assert response.status_code == 200, response.text
    assert response.json()["file"]["title"] == "Old form"


def test_upload_without_file_is_rejected(client, temp_config) -> None:
    response = client.post("/upload", data=METADATA, files={"other": ("x.txt", b"x", "text/plain")})

    assert response.status_code == 400
    assert _stored(temp_config) == []


def test_wrong_extension_is_rejected(client, temp_config) -> None:
    response = _upload_pdf(client, name="notes.exe")

    assert response.status_code == 400
    assert _stored(temp_config) == []


def test_oversized_upload_returns_413(client, temp_config) -> None:
    payload = b"0" * (temp_config.max_upload_bytes + 1)

    response = _upload_pdf(client, payload=payload)

    assert response.status_code == 413
    assert _stored(temp_config) == []
    assert list(temp_config.incoming_root.iterdir()) == []


def test_video_link_upload_as_json(client, recording_notifier) -> None:
    response = client.post("/upload", json=dict(METADATA, videoUrl="https://example.org/watch"))

    assert response.status_code == 200, response.text
    record = response.json()["file"]
    assert record["kind"] == "video-link"
    assert record["downloadUrl"] == "https://example.org/watch"

    assert client.app.state.notifications.wait_idle()
    assert recording_notifier.sent[0][0] == "New video added: Midterm"


def test_video_link_upload_as_form(client) -> None:
    response = client.post(
        "/upload", data=dict(METADATA, uploadType="video", videoUrl="https://example.org/v")
    )

    assert response.status_code == 200, response.text
    assert response.json()["file"]["storageLocator"] == "https://example.org/v"


def test_video_missing_school_year_is_rejected(client, temp_config) -> None:
    payload = dict(METADATA, videoUrl="https://example.org/v")
    payload.pop("schoolYearLabel")

    response = client.post("/upload", json=payload)

    assert response.status_code == 400
    assert _stored(temp_config) == []


def test_unknown_body_type_is_rejected(client) -> None:
    response = client.post("/upload", content=b"hello", headers={"content-type": "text/plain"})

    assert response.status_code == 400


def test_multi_upload_builds_one_archive(client, temp_config) -> None:
    files = [
        ("files", (f"week{index}.pdf", f"page {index}".encode(), "application/pdf"))
        for index in range(1, 4)
    ]

    response = client.post("/upload-multi", data=METADATA, files=files)

    assert response.status_code == 200, response.text
    record = response.json()["file"]
    assert record["kind"] == "archive"
    assert record["fileName"].startswith("Algo_Midterm_stu1_")
    archive = client.get(record["downloadUrl"])
    with zipfile.ZipFile(io.BytesIO(archive.content)) as bundle:
        assert sorted(bundle.namelist()) == ["week1.pdf", "week2.pdf", "week3.pdf"]
    assert list(temp_config.incoming_root.iterdir()) == []


def test_multi_upload_enforces_file_count(client, temp_config) -> None:
    files = [
        ("files", (f"part{index}.pdf", b"x", "application/pdf"))
        for index in range(temp_config.max_batch_files + 1)
    ]

    response = client.post("/upload-multi", data=METADATA, files=files)

    assert response.status_code == 400
    assert _stored(temp_config) == []


def test_multi_upload_without_files_is_rejected(client) -> None:
    response = client.post("/upload-multi", data=METADATA, files={"nothing": ("x", b"", "text/plain")})

    assert response.status_code == 400


def test_get_files_filters_by_year(client) -> None:
    _upload_pdf(client, name="a.pdf", yearFilter="2024")
    _upload_pdf(client, name="b.pdf", title="Final", yearFilter="2025")

    assert [item["title"] for item in client.get("/get-files", params={"year": "2025"}).json()] == [
        "Final"
    ]
    assert len(client.get("/get-files").json()) == 2
    assert client.get("/get-files", params={"year": "soon"}).status_code == 400


def test_get_files_accepts_legacy_year_parameter(client) -> None:
    _upload_pdf(client, name="a.pdf", yearFilter="2024")
    _upload_pdf(client, name="b.pdf", title="Final", yearFilter="2025")

    listing = client.get("/get-files", params={"annee": "2025"}).json()
    assert [item["title"] for item in listing] == ["Final"]
    assert client.get("/get-files", params={"annee": "later"}).status_code == 400


def test_voting_is_tracked_per_voter(client) -> None:
    record_id = _upload_pdf(client).json()["file"]["id"]

    first = client.post("/vote", json={"id": record_id, "vote": "like", "voter": "alice"})
    repeat = client.post("/vote", json={"id": record_id, "vote": "like", "voter": "alice"})
    switched = client.post("/vote", json={"id": record_id, "vote": "dislike", "voter": "alice"})

    assert first.json() == {"likes": 1, "dislikes": 0}
    assert repeat.json() == {"likes": 1, "dislikes": 0}
    assert switched.json() == {"likes": 0, "dislikes": 1}
    assert client.post("/vote", json={"id": 999, "vote": "like"}).status_code == 404
    assert client.post("/vote", json={"id": record_id, "vote": "meh"}).status_code == 400


def test_admin_routes_require_a_session(client) -> None:
    assert client.get("/api/check-session").status_code == 401
    assert client.post("/edit-file", json={"id": 1, "title": "x"}).status_code == 401
    assert client.delete("/delete-file/1").status_code == 401
    assert client.get("/get-logs").status_code == 401
    assert client.delete("/delete-all-logs").status_code == 401


def test_login_rejects_wrong_password(client) -> None:
    response = client.post("/admin/login", json={"password": "nope"})

    assert response.status_code == 401
    assert SESSION_COOKIE_NAME not in client.cookies


def test_bearer_token_grants_access(client) -> None:
    token = client.post("/admin/login", json={"password": ADMIN_PASSWORD}).json()["token"]
    client.cookies.clear()

    response = client.get("/api/check-session", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == {"authenticated": True}


def test_logout_revokes_session(admin_client) -> None:
    assert admin_client.get("/api/check-session").status_code == 200

    admin_client.post("/admin/logout")

    assert admin_client.get("/api/check-session").status_code == 401


def test_admin_edit_delete_and_audit_log(admin_client, temp_config) -> None:
    record = _upload_pdf(admin_client).json()["file"]

    edit = admin_client.post(
        "/edit-file",
        json={"id": record["id"], "courseName": "Graphs", "description": "Revised", "yearFilter": "2025"},
    )
    assert edit.status_code == 200, edit.text
    edited = edit.json()["file"]
    assert edited["storageLocator"].startswith("year_2025/Graphs/")
    assert admin_client.get(edited["downloadUrl"]).status_code == 200

    assert admin_client.delete(f"/delete-file/{record['id']}").status_code == 200
    assert admin_client.delete(f"/delete-file/{record['id']}").status_code == 404
    assert admin_client.get(edited["downloadUrl"]).status_code == 404

    actions = [entry["action"] for entry in admin_client.get("/get-logs").json()]
    assert actions[0].startswith(f"[{record['id']}]") and "modified ->" in actions[0]
    assert actions[1].endswith("DELETED")

    log_id = admin_client.get("/get-logs").json()[0]["id"]
    assert admin_client.delete(f"/delete-log/{log_id}").status_code == 200
    assert admin_client.delete(f"/delete-log/{log_id}").status_code == 404
    assert admin_client.delete("/delete-all-logs").json() == {"success": True, "removed": 1}
    assert admin_client.get("/get-logs").json() == []


def test_edit_rejects_kind_change_to_video(admin_client) -> None:
    record = _upload_pdf(admin_client).json()["file"]

    response = admin_client.post("/edit-file", json={"id": record["id"], "kind": "video-link"})

    assert response.status_code == 400


def test_chat_flow(client, admin_client) -> None:
    assert client.post("/add-message", json={"author": "alice", "message": "hello"}).status_code == 200
    assert client.post("/add-message", json={"nom": "bob", "message": "hey"}).status_code == 200
    assert client.post("/add-message", json={"author": "", "message": "x"}).status_code == 400

    messages = client.get("/get-messages").json()
    assert [entry["author"] for entry in messages] == ["alice", "bob"]

    assert admin_client.delete(f"/delete-message/{messages[0]['id']}").status_code == 200
    assert [entry["author"] for entry in client.get("/get-messages").json()] == ["bob"]


def test_ask_question_is_forwarded(client, recording_notifier) -> None:
    response = client.post("/ask-question", json={"nomDiscord": "stu1", "message": "Exam date?"})

    assert response.status_code == 202
    assert client.app.state.notifications.wait_idle()
    subject, body = recording_notifier.sent[0]
    assert subject == "New contact message"
    assert "Handle: stu1" in body
    assert "Email: Not provided" in body
    assert "Exam date?" in body


def test_uploads_route_refuses_missing_files(client) -> None:
    assert client.get("/uploads/Algo/missing.pdf").status_code == 404


def test_corrupt_store_yields_server_error(client, temp_config) -> None:
    temp_config.records_file.write_text("not json", encoding="utf-8")

    response = client.get("/get-files")

    assert response.status_code == 500
    assert "not json" not in response.text

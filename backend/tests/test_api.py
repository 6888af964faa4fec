"""API tests with TestClient: health, users, sessions, files."""

import base64
import io

import pytest
from fakeredis import FakeServer
from fakeredis import aioredis as fake_aioredis
from fastapi.testclient import TestClient
from PIL import Image

from filevault.main import create_app


@pytest.fixture
def client(settings):
    """TestClient for the app, as a context manager so the lifespan runs.
    The cache is an in-process fake; database and blobs live under tmp_path."""
    app = create_app(
        settings,
        cache_factory=lambda s: fake_aioredis.FakeRedis(server=FakeServer(), decode_responses=True),
    )
    with TestClient(app) as c:
        yield c


def _basic(email: str, password: str) -> dict:
    raw = base64.b64encode(f"{email}:{password}".encode("utf-8")).decode()
    return {"Authorization": f"Basic {raw}"}


def _register(client, email="bob@example.com", password="toto1234!"):
    return client.post("/users", json={"email": email, "password": password})


def _token(client, email="bob@example.com", password="toto1234!") -> str:
    r = client.get("/connect", headers=_basic(email, password))
    assert r.status_code == 200
    return r.json()["token"]


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def _png() -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (600, 300), (1, 2, 3)).save(out, format="PNG")
    return out.getvalue()


def test_health(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_status_and_stats(client: TestClient) -> None:
    assert client.get("/status").json() == {"redis": True, "db": True}
    assert client.get("/stats").json() == {"users": 0, "files": 0}
    _register(client)
    assert client.get("/stats").json() == {"users": 1, "files": 0}


def test_register(client: TestClient) -> None:
    r = _register(client)
    assert r.status_code == 201
    data = r.json()
    assert data["email"] == "bob@example.com"
    assert isinstance(data["id"], int)
    assert "password" not in data and "password_hash" not in data


def test_register_queues_welcome_job(client: TestClient) -> None:
    _register(client)
    queue = client.app.state.welcome_queue
    assert client.portal.call(queue.size) == 1


def test_register_twice_conflicts(client: TestClient) -> None:
    assert _register(client).status_code == 201
    r = _register(client, password="other")
    assert r.status_code == 409
    assert r.json()["detail"] == "Already exist"
    # First registration still works
    assert _token(client)


@pytest.mark.parametrize(
    "body,detail",
    [({"password": "x"}, "Missing email"), ({"email": "a@example.com"}, "Missing password")],
)
def test_register_missing_fields(client: TestClient, body, detail) -> None:
    r = client.post("/users", json=body)
    assert r.status_code == 400
    assert r.json()["detail"] == detail


def test_connect_wrong_password_and_unknown_user_look_the_same(client: TestClient) -> None:
    _register(client)
    wrong = client.get("/connect", headers=_basic("bob@example.com", "nope"))
    unknown = client.get("/connect", headers=_basic("ghost@example.com", "toto1234!"))
    missing = client.get("/connect")
    for r in (wrong, unknown, missing):
        assert r.status_code == 401
        assert r.json() == {"detail": "Unauthorized"}


def test_connect_with_non_ascii_password(client: TestClient) -> None:
    assert _register(client, password="pässwörd").status_code == 201
    r = client.get("/connect", headers=_basic("bob@example.com", "pässwörd"))
    assert r.status_code == 200
    assert client.get("/users/me", headers=_auth(r.json()["token"])).status_code == 200


def test_password_may_contain_colon(client: TestClient) -> None:
    _register(client, password="a:b:c")
    assert _token(client, password="a:b:c")


def test_connect_malformed_basic_header_same_as_unknown_user(client: TestClient) -> None:
    _register(client)
    no_colon = base64.b64encode(b"bob@example.com").decode()
    not_utf8 = base64.b64encode(b"bob@example.com:\xff\xfe").decode()
    responses = [
        client.get("/connect", headers={"Authorization": "Basic !!!notb64"}),
        client.get("/connect", headers={"Authorization": f"Basic {no_colon}"}),
        client.get("/connect", headers={"Authorization": f"Basic {not_utf8}"}),
        client.get("/connect", headers={"Authorization": "Basic"}),
        client.get("/connect", headers={"Authorization": "Bearer abc"}),
        client.get("/connect", headers=_basic("ghost@example.com", "toto1234!")),
    ]
    for r in responses:
        assert r.status_code == 401
        assert r.json() == {"detail": "Unauthorized"}


def test_email_is_case_insensitive(client: TestClient) -> None:
    r = _register(client, email="Bob@Example.COM")
    assert r.status_code == 201
    assert r.json()["email"] == "bob@example.com"
    assert _token(client, email="Bob@Example.COM")
    assert _token(client, email="bob@example.com")
    assert _register(client, email="BOB@example.com").status_code == 409


def test_me_requires_auth(client: TestClient) -> None:
    assert client.get("/users/me").status_code == 401
    assert client.get("/users/me", headers=_auth("bogus")).status_code == 401


def test_me_with_bearer_and_x_token(client: TestClient) -> None:
    _register(client)
    token = _token(client)
    r = client.get("/users/me", headers=_auth(token))
    assert r.status_code == 200
    assert r.json()["email"] == "bob@example.com"
    r = client.get("/users/me", headers={"X-Token": token})
    assert r.status_code == 200


def test_disconnect(client: TestClient) -> None:
    _register(client)
    token = _token(client)
    r = client.get("/disconnect", headers=_auth(token))
    assert r.status_code == 204
    assert client.get("/users/me", headers=_auth(token)).status_code == 401
    assert client.get("/disconnect", headers=_auth(token)).status_code == 401
    assert client.get("/disconnect").status_code == 401


def test_upload_requires_auth(client: TestClient) -> None:
    r = client.post("/files", json={"name": "a", "kind": "folder"})
    assert r.status_code == 401


def test_upload_folder_and_file(client: TestClient) -> None:
    _register(client)
    headers = _auth(_token(client))
    r = client.post("/files", json={"name": "docs", "kind": "folder"}, headers=headers)
    assert r.status_code == 201
    folder = r.json()
    assert folder["name"] == "docs"
    assert folder["kind"] == "folder"
    assert folder["parentId"] == 0
    assert folder["isPublic"] is False
    assert set(folder) == {"id", "userId", "name", "kind", "isPublic", "parentId"}

    r = client.post(
        "/files",
        json={"name": "a.txt", "type": "file", "parentId": folder["id"], "isPublic": True,
              "data": _b64(b"Hello")},
        headers=headers,
    )
    assert r.status_code == 201
    f = r.json()
    assert f["parentId"] == folder["id"]
    assert f["isPublic"] is True
    assert "data" not in f and "content_ref" not in f
    # Only images produce thumbnail jobs
    assert client.portal.call(client.app.state.thumbnail_queue.size) == 0


@pytest.mark.parametrize(
    "body,detail",
    [
        ({"kind": "file", "data": "SGVsbG8="}, "Missing name"),
        ({"name": "a"}, "Missing type"),
        ({"name": "a", "kind": "movie"}, "Missing type"),
        ({"name": "a", "kind": "file"}, "Missing data"),
        ({"name": "a", "kind": "file", "data": "%%%"}, "Invalid data"),
        ({"name": "a", "kind": "folder", "parentId": 999}, "Parent not found"),
    ],
)
def test_upload_validation(client: TestClient, body, detail) -> None:
    _register(client)
    r = client.post("/files", json=body, headers=_auth(_token(client)))
    assert r.status_code == 400
    assert r.json()["detail"] == detail


def test_upload_into_file_rejected(client: TestClient) -> None:
    _register(client)
    headers = _auth(_token(client))
    f = client.post("/files", json={"name": "a.txt", "kind": "file", "data": _b64(b"x")}, headers=headers).json()
    r = client.post("/files", json={"name": "b", "kind": "folder", "parentId": f["id"]}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Parent is not a folder"


def test_show_and_ownership(client: TestClient) -> None:
    _register(client, "u1@example.com")
    _register(client, "u2@example.com")
    t1 = _token(client, "u1@example.com")
    t2 = _token(client, "u2@example.com")
    f = client.post("/files", json={"name": "a.txt", "kind": "file", "data": _b64(b"x")}, headers=_auth(t1)).json()

    assert client.get(f"/files/{f['id']}", headers=_auth(t1)).json()["id"] == f["id"]
    theirs = client.get(f"/files/{f['id']}", headers=_auth(t2))
    missing = client.get("/files/99999", headers=_auth(t2))
    garbage = client.get("/files/abc", headers=_auth(t1))
    for r in (theirs, missing, garbage):
        assert r.status_code == 404
        assert r.json() == {"detail": "Not found"}


def test_index_pagination(client: TestClient) -> None:
    _register(client)
    headers = _auth(_token(client))
    folder = client.post("/files", json={"name": "A", "kind": "folder"}, headers=headers).json()
    for i in range(21):
        client.post("/files", json={"name": f"d{i}", "kind": "folder", "parentId": folder["id"]}, headers=headers)

    root = client.get("/files", headers=headers).json()
    assert [f["name"] for f in root] == ["A"]

    page0 = client.get("/files", params={"parentId": folder["id"]}, headers=headers).json()
    page1 = client.get("/files", params={"parentId": folder["id"], "page": 1}, headers=headers).json()
    page2 = client.get("/files", params={"parentId": folder["id"], "page": 2}, headers=headers).json()
    junk = client.get("/files", params={"parentId": folder["id"], "page": "abc"}, headers=headers).json()
    assert len(page0) == 20
    assert [f["name"] for f in page1] == ["d20"]
    assert page2 == []
    assert junk == page0


def test_publish_unpublish(client: TestClient) -> None:
    _register(client, "u1@example.com")
    _register(client, "u2@example.com")
    t1 = _token(client, "u1@example.com")
    t2 = _token(client, "u2@example.com")
    f = client.post("/files", json={"name": "a.txt", "kind": "file", "data": _b64(b"x")}, headers=_auth(t1)).json()

    r = client.put(f"/files/{f['id']}/publish", headers=_auth(t1))
    assert r.status_code == 200
    assert r.json()["isPublic"] is True
    assert client.put(f"/files/{f['id']}/unpublish", headers=_auth(t2)).status_code == 404
    r = client.put(f"/files/{f['id']}/unpublish", headers=_auth(t1))
    assert r.json()["isPublic"] is False
    assert client.put(f"/files/{f['id']}/publish").status_code == 401


def test_data_visibility(client: TestClient) -> None:
    _register(client)
    headers = _auth(_token(client))
    f = client.post("/files", json={"name": "hello.txt", "kind": "file", "data": _b64(b"Hello")}, headers=headers).json()

    r = client.get(f"/files/{f['id']}/data", headers=headers)
    assert r.status_code == 200
    assert r.content == b"Hello"
    assert r.headers["content-type"].startswith("text/plain")

    assert client.get(f"/files/{f['id']}/data").status_code == 404
    client.put(f"/files/{f['id']}/publish", headers=headers)
    r = client.get(f"/files/{f['id']}/data")
    assert r.status_code == 200
    assert r.content == b"Hello"
    # A stale token is treated as anonymous
    assert client.get(f"/files/{f['id']}/data", headers=_auth("stale")).status_code == 200


def test_data_folder_has_no_content(client: TestClient) -> None:
    _register(client)
    headers = _auth(_token(client))
    folder = client.post("/files", json={"name": "A", "kind": "folder"}, headers=headers).json()
    r = client.get(f"/files/{folder['id']}/data", headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "A folder doesn't have content"


def test_image_upload_queues_job_and_serves_variants(client: TestClient, settings) -> None:
    from filevault.jobs.worker import Worker

    _register(client)
    headers = _auth(_token(client))
    original = _png()
    folder = client.post("/files", json={"name": "A", "kind": "folder"}, headers=headers).json()
    img = client.post(
        "/files",
        json={"name": "B.png", "kind": "image", "parentId": folder["id"], "data": _b64(original)},
        headers=headers,
    ).json()
    state = client.app.state
    assert client.portal.call(state.thumbnail_queue.size) == 1

    # Thumbnail not generated yet: same as missing
    assert client.get(f"/files/{img['id']}/data", params={"size": 250}, headers=headers).status_code == 404

    worker = Worker(settings, state.database, state.cache, state.blobs)
    # Registration queued a welcome job next to the thumbnail job
    assert client.portal.call(worker.drain) == 2
    assert client.portal.call(state.thumbnail_queue.size) == 0
    assert client.portal.call(state.welcome_queue.size) == 0

    r = client.get(f"/files/{img['id']}/data", params={"size": 250}, headers=headers)
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert Image.open(io.BytesIO(r.content)).width == 250
    r = client.get(f"/files/{img['id']}/data", headers=headers)
    assert r.content == original
    r = client.get(f"/files/{img['id']}/data", params={"size": "big"}, headers=headers)
    assert r.content == original

"""
tests/test_import_export.py
"""
from __future__ import annotations

import io
import json
from urllib.parse import urlsplit

from poembox.blog import app, get_db, load_posts, save_posts

CSRF = "test-token"

POSTS = [
    {
        "id": "0f8e6a1c2b3d4e5f60718293a4b5c6d7",
        "title": "glitter in my teeth",
        "body": "i swallowed a constellation\nand now my laughter\n",
        "tags": ["y2k", "soft", "stars"],
        "createdAt": "2024-03-01T10:00:00.000Z",
        "updatedAt": "2024-03-02T10:00:00.000Z",
        "slug": "glitter-in-my-teeth-c6d7",
    },
    {
        "id": "9a8b7c6d5e4f30211203948576a5b4c3",
        "title": "typewriter loveletter",
        "body": "tap tap tap\n",
        "tags": ["typewriter", "love"],
        "createdAt": "2024-04-01T10:00:00.000Z",
        "updatedAt": "2024-04-01T10:00:00.000Z",
        "slug": "typewriter-loveletter-b4c3",
    },
]


# ───────────────────────── helpers ────────────────────────────────
def _prime(client) -> None:
    with client.session_transaction() as sess:
        sess["csrf"] = CSRF


def _upload(client, payload: bytes, name: str = "poetry-backup.json"):
    _prime(client)
    return client.post(
        "/import",
        data={"csrf": CSRF, "file": (io.BytesIO(payload), name)},
        content_type="multipart/form-data",
    )


# ───────────────────────── HTTP ───────────────────────────────────
def test_export_is_full_collection_download(client):
    save_posts(POSTS, db=get_db())
    client.get("/?tag=love")                     # filters never narrow exports

    rv = client.get("/export")
    assert rv.status_code == 200
    assert rv.mimetype == "application/json"
    assert 'filename="poetry-backup.json"' in rv.headers["Content-Disposition"]

    doc = json.loads(rv.data)
    assert doc["version"] == 1
    assert doc["exportedAt"].endswith("Z")
    assert doc["posts"] == POSTS


def test_export_then_import_roundtrip(client):
    save_posts(POSTS, db=get_db())
    exported = client.get("/export").data

    save_posts([], db=get_db())
    rv = _upload(client, exported)
    assert rv.status_code == 302
    assert load_posts(db=get_db()) == POSTS


def test_import_fills_defaults_and_resets_view(client):
    save_posts(POSTS, db=get_db())
    client.get("/?tag=love&q=tap")

    rv = _upload(client, json.dumps({"posts": [{"title": "x"}]}).encode())
    assert rv.status_code == 302

    (post,) = load_posts(db=get_db())
    assert post["title"] == "x"
    assert post["body"] == ""
    assert post["tags"] == []
    assert post["slug"] == "x-" + post["id"][-4:]
    assert rv.headers["Location"].endswith("#post-" + post["slug"])

    with client.session_transaction() as sess:
        assert sess["active_tag"] is None
        assert sess["query"] == ""
        assert sess["fragment"] == "post-" + post["slug"]


def test_import_bare_array_with_bom(client):
    payload = "\ufeff" + json.dumps([{"title": "bom", "tags": ["A"]}])
    rv = _upload(client, payload.encode("utf-8"))
    assert rv.status_code == 302
    (post,) = load_posts(db=get_db())
    assert post["tags"] == ["a"]


def test_import_empty_list_clears_fragment(client):
    save_posts(POSTS, db=get_db())
    rv = _upload(client, b"[]")
    assert urlsplit(rv.headers["Location"]).fragment == ""
    assert load_posts(db=get_db()) == []


def test_import_object_without_posts_is_rejected(client):
    save_posts(POSTS, db=get_db())
    rv = _upload(client, json.dumps({"title": "x"}).encode())
    assert rv.status_code == 400
    assert "Could not import that file" in rv.get_data(as_text=True)
    assert load_posts(db=get_db()) == POSTS


def test_import_garbage_is_rejected(client):
    save_posts(POSTS, db=get_db())
    for payload in (b"{nope", b"\xff\xfe\x00garbage"):
        rv = _upload(client, payload)
        assert rv.status_code == 400
        assert load_posts(db=get_db()) == POSTS


def test_import_repairs_non_object_records(client):
    rv = _upload(client, json.dumps([{"title": "ok"}, 5, "x"]).encode())
    assert rv.status_code == 302
    posts = load_posts(db=get_db())
    assert len(posts) == 3
    assert sorted(p["title"] for p in posts) == ["ok", "untitled", "untitled"]


def test_import_too_deeply_nested_is_rejected(client):
    save_posts(POSTS, db=get_db())
    rv = _upload(client, b"[" * 200000 + b"]" * 200000)
    assert rv.status_code == 400
    assert "Could not import that file" in rv.get_data(as_text=True)
    assert load_posts(db=get_db()) == POSTS


def test_import_without_file_changes_nothing(client):
    save_posts(POSTS, db=get_db())
    _prime(client)
    rv = client.post("/import", data={"csrf": CSRF})
    assert rv.status_code == 302
    assert load_posts(db=get_db()) == POSTS


# ───────────────────────── CLI ────────────────────────────────────
def test_cli_export(client):
    save_posts(POSTS, db=get_db())
    result = app.test_cli_runner().invoke(args=["export"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["posts"] == POSTS


def test_cli_import(client, tmp_path):
    backup = tmp_path / "backup.json"
    backup.write_text(json.dumps([{"title": "from cli"}]), encoding="utf-8")

    result = app.test_cli_runner().invoke(args=["import", str(backup)])
    assert result.exit_code == 0, result.output
    assert "imported 1 poem(s)" in result.output
    assert [p["title"] for p in load_posts(db=get_db())] == ["from cli"]


def test_cli_import_rejects_wrong_shape(client, tmp_path):
    save_posts(POSTS, db=get_db())
    backup = tmp_path / "backup.json"
    backup.write_text(json.dumps({"title": "x"}), encoding="utf-8")

    result = app.test_cli_runner().invoke(args=["import", str(backup)])
    assert result.exit_code != 0
    assert "Could not import that file" in result.output
    assert load_posts(db=get_db()) == POSTS


def test_cli_import_rejects_deep_nesting(client, tmp_path):
    save_posts(POSTS, db=get_db())
    backup = tmp_path / "backup.json"
    backup.write_text("[" * 200000 + "]" * 200000, encoding="utf-8")

    result = app.test_cli_runner().invoke(args=["import", str(backup)])
    assert result.exit_code != 0
    assert "Could not import that file" in result.output
    assert load_posts(db=get_db()) == POSTS


def test_cli_list_filters(client):
    save_posts(POSTS, db=get_db())
    result = app.test_cli_runner().invoke(args=["list", "--tag", "love"])
    assert result.exit_code == 0
    assert "typewriter-loveletter-b4c3" in result.output
    assert "glitter" not in result.output

    result = app.test_cli_runner().invoke(args=["list"])
    lines = result.output.strip().splitlines()
    assert lines[0].endswith("typewriter loveletter")    # most recent first


def test_cli_init_seeds_demo(client, monkeypatch):
    monkeypatch.setitem(app.config, "SEED_DEMO", True)
    # the autouse fixture already created the table; the key is still unset
    result = app.test_cli_runner().invoke(args=["init"])
    assert result.exit_code == 0
    assert "2 poem(s)" in result.output

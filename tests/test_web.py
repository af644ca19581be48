"""
tests/test_web.py
"""
from __future__ import annotations

import hashlib
from typing import Any

import requests

import cairn.checker as checker
from cairn import bookmarks, notes, todos
from cairn.web import get_db


def _create(client, path: str, payload: dict[str, Any]) -> str:
    """POST a create form; return the new id from the 303 Location."""
    rv = client.post(path, data=payload)
    assert rv.status_code == 303, rv.data.decode()
    location = rv.headers["Location"]
    assert location.startswith(f"{path}/")
    return location.rsplit("/", 1)[-1]


def _detail_ok(client, url: str, *expect: bytes) -> None:
    resp = client.get(url)
    assert resp.status_code == 200
    for token in expect:
        assert token in resp.data, url


# ───────────────────────── notes ────────────────────────────────────
def test_note_lifecycle(client):
    nid = _create(client, "/notes", {"title": "My *Note*", "body": "note **body**"})
    _detail_ok(client, f"/notes/{nid}", b"My *Note*", b"<strong>body</strong>")
    _detail_ok(client, f"/notes/{nid}/edit", b'value="My *Note*"', b"note **body**")

    rv = client.post(f"/notes/{nid}", data={"title": "Renamed", "body": "new"})
    assert rv.status_code == 303
    _detail_ok(client, f"/notes/{nid}", b"Renamed")

    rv = client.post(f"/notes/{nid}/delete")
    assert rv.status_code == 303
    assert rv.headers["Location"].endswith("/")
    assert client.get(f"/notes/{nid}").status_code == 404


def test_note_without_title_is_rejected(client):
    rv = client.post("/notes", data={"title": "   ", "body": "kept in the form"})
    assert rv.status_code == 400
    assert b"Title is required." in rv.data
    assert b"kept in the form" in rv.data


def test_note_edit_without_title_is_rejected(client):
    nid = _create(client, "/notes", {"title": "stay", "body": ""})
    rv = client.post(f"/notes/{nid}", data={"title": "", "body": "x"})
    assert rv.status_code == 400
    entry, _ = notes.get_by_id(nid, db=get_db())
    assert entry.title == "stay"


# ───────────────────────── bookmarks ────────────────────────────────
def test_bookmark_lifecycle(client):
    bid = _create(client, "/bookmarks", {"title": "PyPI", "url": "https://www.pypi.org"})
    _detail_ok(client, f"/bookmarks/{bid}", b'href="https://www.pypi.org"', b"pypi.org", b"Never checked")

    rv = client.post(f"/bookmarks/{bid}", data={"title": "PyPI", "url": "https://pypi.org/simple"})
    assert rv.status_code == 303
    _, bm = bookmarks.get_by_id(bid, db=get_db())
    assert bm.url == "https://pypi.org/simple"

    client.post(f"/bookmarks/{bid}/delete")
    assert client.get(f"/bookmarks/{bid}").status_code == 404


def test_bookmark_without_url_is_rejected(client):
    rv = client.post("/bookmarks", data={"title": "no link", "url": ""})
    assert rv.status_code == 400
    assert b"URL is required." in rv.data


def test_bookmark_check_button(client, monkeypatch):
    class _Resp:
        status_code = 200

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def iter_content(self, chunk_size=8192):
            yield b"hello"

    monkeypatch.setattr(checker.requests, "get", lambda *a, **kw: _Resp())
    bid = _create(client, "/bookmarks", {"title": "hello", "url": "https://example.com"})

    rv = client.post(f"/bookmarks/{bid}/check", follow_redirects=True)
    assert rv.status_code == 200
    assert b"HTTP 200" in rv.data
    assert hashlib.sha256(b"hello").hexdigest()[:16].encode() in rv.data


def test_bookmark_check_failure_is_shown(client, monkeypatch):
    def _down(*a, **kw):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(checker.requests, "get", _down)
    bid = _create(client, "/bookmarks", {"title": "down", "url": "https://down.example"})

    rv = client.post(f"/bookmarks/{bid}/check", follow_redirects=True)
    assert rv.status_code == 200
    assert b"Fetch failed" in rv.data


def test_check_unknown_bookmark(client):
    assert client.post("/bookmarks/ghost/check").status_code == 404


# ───────────────────────── todos ────────────────────────────────────
def test_todo_items_through_the_ui(client):
    tid = _create(client, "/todos", {"title": "Packing"})
    for body in ("socks", "charger", "passport"):
        rv = client.post(f"/todos/{tid}/items", data={"body": body})
        assert rv.status_code == 303

    db = get_db()
    _, items = todos.get_by_id(tid, db=db)
    assert [i.body for i in items] == ["socks", "charger", "passport"]
    socks, charger, passport = (i.id for i in items)

    client.post(f"/todos/{tid}/items/{socks}/toggle")
    client.post(f"/todos/{tid}/items/{charger}/update", data={"body": "usb-c charger"})
    client.post(f"/todos/{tid}/items/{passport}/delete")

    _, items = todos.get_by_id(tid, db=db)
    assert [(i.body, i.is_done) for i in items] == [("socks", True), ("usb-c charger", False)]
    _detail_ok(client, f"/todos/{tid}", b"Packing", b"usb-c charger", b'class="done"')


def test_todo_item_without_body(client):
    tid = _create(client, "/todos", {"title": "Empty"})
    rv = client.post(f"/todos/{tid}/items", data={"body": "  "})
    assert rv.status_code == 400
    assert b"Item text is required." in rv.data


def test_todo_item_of_another_list_is_404(client):
    mine = _create(client, "/todos", {"title": "mine"})
    theirs = _create(client, "/todos", {"title": "theirs"})
    item = todos.add_item(theirs, "not yours", db=get_db())

    assert client.post(f"/todos/{mine}/items/{item}/toggle").status_code == 404
    assert todos.get_item(item, db=get_db()).is_done is False


def test_todo_toggle_of_vanished_item_is_harmless(client):
    tid = _create(client, "/todos", {"title": "list"})
    rv = client.post(f"/todos/{tid}/items/ghost/toggle")
    assert rv.status_code == 303


def test_todo_update_of_vanished_item_is_404(client):
    tid = _create(client, "/todos", {"title": "list"})
    rv = client.post(f"/todos/{tid}/items/ghost/update", data={"body": "x"})
    assert rv.status_code == 404


def test_todo_rename_and_delete(client):
    tid = _create(client, "/todos", {"title": "Before"})
    todos.add_item(tid, "item", db=get_db())
    client.post(f"/todos/{tid}", data={"title": "After"})
    _detail_ok(client, f"/todos/{tid}", b"After")

    client.post(f"/todos/{tid}/delete")
    assert client.get(f"/todos/{tid}").status_code == 404


# ───────────────────────── dashboard ────────────────────────────────
def test_dashboard_lists_every_kind(client):
    nid = _create(client, "/notes", {"title": "dash-note", "body": ""})
    bid = _create(client, "/bookmarks", {"title": "dash-bookmark", "url": "https://x.example"})
    tid = _create(client, "/todos", {"title": "dash-todo"})

    html = client.get("/").data.decode()
    for path in (f"/notes/{nid}", f"/bookmarks/{bid}", f"/todos/{tid}"):
        assert f'href="{path}"' in html
    # newest edit first
    assert html.index("dash-todo") < html.index("dash-bookmark") < html.index("dash-note")


def test_entry_redirects_to_its_kind(client):
    bid = _create(client, "/bookmarks", {"title": "r", "url": "https://r.example"})
    rv = client.get(f"/entries/{bid}")
    assert rv.status_code == 302
    assert rv.headers["Location"].endswith(f"/bookmarks/{bid}")


def test_wrong_kind_in_url_is_404(client):
    nid = _create(client, "/notes", {"title": "a note", "body": ""})
    assert client.get(f"/bookmarks/{nid}").status_code == 404
    assert client.get(f"/todos/{nid}").status_code == 404

"""tests/test_smoke.py"""

import pytest


@pytest.mark.parametrize(
    "path",
    [
        "/",                # dashboard
        "/notes/new",       # create forms
        "/bookmarks/new",
        "/todos/new",
    ],
)
def test_public_routes_ok(client, path):
    """Each page reachable from the nav should render."""
    rv = client.get(path)
    assert rv.status_code == 200
    assert rv.headers["X-Frame-Options"] == "DENY"


def test_not_found(client):
    """Completely unknown URL → 404 page."""
    rv = client.get("/does/not/exist")
    assert rv.status_code == 404
    assert b"Page not found" in rv.data

"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
import itertools
import os
import sqlite3
from pathlib import Path
from typing import Generator

import pytest
from flask.testing import FlaskClient
from pytest import MonkeyPatch

# keep the import of cairn.web from migrating the real database
os.environ["CAIRN_AUTO_MIGRATE"] = "0"

from cairn import db as storage  # noqa: E402
from cairn.db import connect, run_migrations  # noqa: E402
from cairn.web import app, init_db  # noqa: E402


@pytest.fixture(scope="session")
def _tmp_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One temp file for the web tests of the whole session."""
    return tmp_path_factory.mktemp("data") / "test.sqlite3"


@pytest.fixture(scope="session", autouse=True)
def _configure_app(_tmp_db_path: Path) -> None:
    """
    Point the Flask app at the temp database *once* and migrate it.
    """
    app.config.update(
        TESTING=True,
        DATABASE_URL=f"sqlite:///{_tmp_db_path}",
    )
    with app.app_context():
        init_db()


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture
def db(tmp_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """A brand-new migrated database per test, for the stores (no Flask)."""
    conn = connect(f"sqlite:///{tmp_path / 'store.sqlite3'}")
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture(autouse=True, scope="session")
def _ticking_clock():
    """
    Patch cairn.db.utc_now for the whole session so every call returns an
    ever-increasing timestamp.  No need for time.sleep().
    """
    counter = itertools.count()         # 0, 1, 2, …

    base = _dt.datetime(2099, 1, 1, tzinfo=_dt.timezone.utc)
    def _fake_now():
        return base + _dt.timedelta(seconds=next(counter))

    mp = MonkeyPatch()
    mp.setattr(storage, "utc_now", _fake_now)

    yield                               # tests run here

    mp.undo()                           # clean up at session end

"""
tests/conftest.py
"""
from __future__ import annotations

import datetime as _dt
import itertools
from pathlib import Path
from typing import Generator

import pytest
from flask.testing import FlaskClient
from pytest import MonkeyPatch

# The single-file app lives here:
from poembox.blog import app, init_db


@pytest.fixture(scope="session", autouse=True)
def _configure_app() -> None:
    """
    Configure the Flask app *once* before the first test is collected.
    Demo seeding is off so every archive starts empty.
    """
    app.config.update(TESTING=True, SEED_DEMO=False, TIMEZONE="UTC")


@pytest.fixture(autouse=True)
def _fresh_db(tmp_path: Path) -> Path:
    """Each test gets its own SQLite file – the archive is one mutable blob."""
    db_file = tmp_path / "poems.sqlite3"
    app.config["DATABASE"] = str(db_file)
    with app.app_context():
        init_db()
    return db_file


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
def req_ctx():
    """A bare request context, enough for url_for() and template rendering."""
    with app.test_request_context("/"):
        yield


@pytest.fixture(autouse=True, scope="session")
def _fast_clock():
    """
    Patch poembox.blog.utc_now for the whole test session so every call
    returns an ever-increasing timestamp.  No need for time.sleep().
    """
    from poembox import blog  # import here to avoid early import

    counter = itertools.count()         # 0, 1, 2, …

    base = _dt.datetime(2099, 1, 1, tzinfo=_dt.timezone.utc)
    def _fake_now():
        return base + _dt.timedelta(seconds=next(counter))

    mp = MonkeyPatch()
    mp.setattr(blog, "utc_now", _fake_now)

    yield                               # tests run here

    mp.undo()                           # clean up at session end

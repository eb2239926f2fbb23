"""Shared fixtures for the feedback service tests.

Every test gets its own SQLite file and a synchronous executor, so a
workflow run has finished by the time create() returns.
"""

import json
from concurrent.futures import Future

import pytest

from shared.database import create_db_engine, init_db
from feedback.app import create_app


class SyncExecutor:
    """Executor that runs submitted work immediately in the caller's thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:  # surfaced through the future, like a real executor
            future.set_exception(e)
        return future


class StubGenerator:
    """Text generator returning a canned reply and recording every call."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def __call__(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite database with all tables."""
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'feedback.db'}")
    init_db(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def executor():
    return SyncExecutor()


@pytest.fixture
def urgent_bug_reply():
    return json.dumps({
        "sentiment": "negative",
        "category": "bug",
        "urgency": "high",
        "reason": "test",
    })


@pytest.fixture
def generator(urgent_bug_reply):
    return StubGenerator(reply=urgent_bug_reply)


@pytest.fixture
def app(engine, generator, executor):
    flask_app = create_app(engine=engine, generate=generator, executor=executor, retry_delay=0)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_generator():
    """Factory for StubGenerator instances with a custom reply or error."""
    return StubGenerator

"""Configure pytest fixtures and in-memory Firebase fakes for the crash-response tests."""

import dataclasses
import math
from types import SimpleNamespace

import flask
import pytest

from config.loader import get_settings
from utils.app_context import AppContext

EARTH_RADIUS_KM = 6371.0


def degrees_north_for_km(km: float) -> float:
    """Latitude offset that lies exactly ``km`` away along a meridian."""
    return math.degrees(km / EARTH_RADIUS_KM)


class FakeSnapshot:
    def __init__(self, doc_id, data=None):
        self.id = doc_id
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeQuery:
    def __init__(self, store, collection, field, value):
        self.store = store
        self.collection = collection
        self.field = field
        self.value = value
        self.count = None

    def limit(self, count):
        self.count = count
        return self

    def get(self, timeout=None):
        self.store.calls.append(("query", self.collection, self.value, timeout))
        if self.value in self.store.hanging_keys:
            self.store.hanging_keys[self.value].wait(5)
        self.store.maybe_fail(self.collection, self.value)
        matches = [
            FakeSnapshot(doc_id, data)
            for doc_id, data in self.store.data.get(self.collection, {}).items()
            if data.get(self.field) == self.value
        ]
        return matches[: self.count] if self.count else matches


class FakeDocument:
    def __init__(self, store, collection, doc_id):
        self.store = store
        self.collection = collection
        self.id = doc_id

    def get(self, timeout=None):
        self.store.calls.append(("get", self.collection, self.id, timeout))
        self.store.maybe_fail(self.collection, self.id)
        return FakeSnapshot(self.id, self.store.data.get(self.collection, {}).get(self.id))

    def set(self, data, timeout=None):
        self.store.calls.append(("set", self.collection, self.id, timeout))
        self.store.maybe_fail(self.collection, self.id)
        self.store.data.setdefault(self.collection, {})[self.id] = dict(data)


class FakeCollection:
    def __init__(self, store, name):
        self.store = store
        self.name = name

    def document(self, doc_id):
        return FakeDocument(self.store, self.name, doc_id)

    def where(self, *, filter):
        assert filter.op_string == "=="
        self.store.filters.append(filter)
        return FakeQuery(self.store, self.name, filter.field_path, filter.value)

    def get(self, timeout=None):
        self.store.calls.append(("list", self.name, None, timeout))
        self.store.maybe_fail(self.name, None)
        return [FakeSnapshot(doc_id, data) for doc_id, data in self.store.data.get(self.name, {}).items()]


class FakeFirestore:
    """Just enough of the Firestore client API for the crash-response code paths."""

    def __init__(self, data=None):
        self.data = data or {}
        self.calls = []
        self.failing_collections = set()
        self.failing_keys = set()
        self.hanging_keys = {}
        self.filters = []

    def collection(self, name):
        return FakeCollection(self, name)

    def fail_collection(self, name):
        self.failing_collections.add(name)

    def fail_key(self, key):
        self.failing_keys.add(key)

    def hang_key(self, key, release):
        """Block lookups of ``key`` until ``release`` is set."""
        self.hanging_keys[key] = release

    def maybe_fail(self, collection, key):
        if collection in self.failing_collections or (key is not None and key in self.failing_keys):
            raise RuntimeError(f"firestore unavailable for {collection}/{key}")


class FakeMessaging:
    """Records send_each/send calls; tokens in ``failing_tokens`` fail individually."""

    def __init__(self, failing_tokens=None, batch_error=None):
        self.failing_tokens = dict(failing_tokens or {})
        self.batch_error = batch_error
        self.batches = []
        self.sent = []

    def send_each(self, messages, app=None):
        self.batches.append(list(messages))
        if self.batch_error:
            raise self.batch_error
        responses = []
        for index, message in enumerate(messages):
            if message.token in self.failing_tokens:
                responses.append(SimpleNamespace(success=False, message_id=None,
                                                 exception=Exception(self.failing_tokens[message.token])))
            else:
                responses.append(SimpleNamespace(success=True, message_id=f"msg-{index}", exception=None))
        return SimpleNamespace(responses=responses)

    def send(self, message, app=None):
        if self.batch_error:
            raise self.batch_error
        self.sent.append(message)
        return f"projects/rideguard/messages/{len(self.sent)}"


def make_settings(**overrides):
    return dataclasses.replace(get_settings(), **overrides)


@pytest.fixture
def firestore_data():
    return {
        "emergency_services": {},
        "rideguard_id": {},
        "users": {},
    }


@pytest.fixture
def fake_db(firestore_data):
    return FakeFirestore(firestore_data)


@pytest.fixture
def fake_messaging():
    return FakeMessaging()


@pytest.fixture
def app_context(fake_db, fake_messaging):
    return AppContext(settings=make_settings(lookup_timeout_seconds=2.0, dispatch_timeout_seconds=2.0),
                      db=fake_db, messaging=fake_messaging)


@pytest.fixture
def flask_app():
    return flask.Flask("rideguard-tests")

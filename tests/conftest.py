import threading
from types import SimpleNamespace

import pytest

import supabase_client


class FakeResponse:
    def __init__(self, data=None, count=None):
        self.data = data if data is not None else []
        self.count = count


class FakeQuery:
    """Records a PostgREST query chain and answers it from the fake client."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.action = None
        self.payload = None
        self.columns = None
        self.count = None
        self.filters = []
        self.order_by = []
        self.range_args = None
        self.limit_value = None

    def select(self, *columns, count=None):
        self.action = "select"
        self.columns = ", ".join(columns)
        self.count = count
        return self

    def insert(self, payload):
        self.action = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.action = "update"
        self.payload = payload
        return self

    def delete(self):
        self.action = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(("eq", column, value))
        return self

    def in_(self, column, values):
        self.filters.append(("in", column, list(values)))
        return self

    def order(self, column, desc=False):
        self.order_by.append((column, desc))
        return self

    def range(self, start, end):
        self.range_args = (start, end)
        return self

    def limit(self, size):
        self.limit_value = size
        return self

    def filter_value(self, column):
        for _, col, value in self.filters:
            if col == column:
                return value
        return None

    def execute(self):
        return self.client._answer(self)


class FakeAuth:
    def __init__(self, user_id="user-1", email="user@example.com", metadata=None):
        self.user = SimpleNamespace(id=user_id, email=email, user_metadata=metadata or {})
        self.session = SimpleNamespace(access_token="access-1", refresh_token="refresh-1")
        self.sign_in_error = None
        self.sign_up_session = True
        self.set_session_error = None
        self.refresh_on_set_session = False
        self.listeners = []
        self.unsubscribed = 0
        self.signed_out = False
        self.sign_up_calls = []

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)

        def unsubscribe():
            self.unsubscribed += 1

        return SimpleNamespace(unsubscribe=unsubscribe)

    def _emit(self, event, session):
        for callback in list(self.listeners):
            callback(event, session)

    def sign_in_with_password(self, credentials):
        if self.sign_in_error is not None:
            raise self.sign_in_error
        return SimpleNamespace(session=self.session, user=self.user)

    def sign_up(self, credentials):
        self.sign_up_calls.append(credentials)
        session = self.session if self.sign_up_session else None
        return SimpleNamespace(session=session, user=self.user)

    def set_session(self, access_token, refresh_token):
        if self.set_session_error is not None:
            raise self.set_session_error
        if self.refresh_on_set_session:
            self.session = SimpleNamespace(access_token="access-2", refresh_token="refresh-2")
            self._emit("TOKEN_REFRESHED", self.session)
        return SimpleNamespace(session=self.session, user=self.user)

    def get_user(self, jwt=None):
        return SimpleNamespace(user=self.user)

    def sign_out(self):
        self.signed_out = True


class FakeSupabase:
    """
    In-memory stand-in for supabase.Client.

    Responses are registered per table; a value may be a FakeResponse, an
    exception to raise, or a callable taking the FakeQuery.
    """

    def __init__(self, user_id="user-1", email="user@example.com", metadata=None):
        self.auth = FakeAuth(user_id, email, metadata)
        self.responses = {}
        self.queries = []
        self._lock = threading.Lock()
        self.postgrest_threads = []

    @property
    def postgrest(self):
        self.postgrest_threads.append(threading.current_thread())
        return SimpleNamespace()

    def respond(self, table, data=None, count=None):
        self.responses[table] = FakeResponse(data, count)

    def fail(self, table, exc):
        self.responses[table] = exc

    def table(self, name):
        return FakeQuery(self, name)

    def _answer(self, query):
        with self._lock:
            self.queries.append(query)
        answer = self.responses.get(query.table)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            answer = answer(query)
            if isinstance(answer, Exception):
                raise answer
            return answer
        if query.action != "select":
            return FakeResponse(data=[query.payload] if query.payload else [])
        return answer or FakeResponse()

    def executed(self, table, action=None):
        return [
            q for q in self.queries
            if q.table == table and (action is None or q.action == action)
        ]


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def flask_app(monkeypatch, fake_supabase):
    monkeypatch.setattr(supabase_client, "create_anon_client", lambda: fake_supabase)
    from app import app

    app.config.update(TESTING=True, SECRET_KEY="test")
    return app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


def sign_in_as(test_client, fake, role, user_id="user-1"):
    """Put Supabase tokens in the Flask session and register the user's role."""
    fake.auth.user.id = user_id
    fake.respond("user_roles", [{"role": role}] if role else [])
    with test_client.session_transaction() as sess:
        sess["access_token"] = "access-1"
        sess["refresh_token"] = "refresh-1"

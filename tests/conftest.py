import json
import pathlib
import sys
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import jwt
import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from civichub.config import Settings
from civichub.llm.providers import Completion, CompletionRequest
from civichub.retrieval.models import RetrievalResult
from civichub.services import build_services

TOKEN_SECRET = "test-admin-secret"


class FakeClock:
    """Wall clock the tests move by hand."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def model_reply(intent: str = "QUESTION", reply_text: str = "Baik Kak, berikut informasinya.", **extra) -> str:
    """Serialize a reply the way models are instructed to answer."""

    return json.dumps({"intent": intent, "reply_text": reply_text, **extra})


class FakeProvider:
    """Model provider recording every request it receives."""

    name = "fake"

    def __init__(
        self,
        replies: str | Callable[[str, str], str] | None = None,
        *,
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self.replies = replies
        self.failures = dict(failures or {})
        self.calls: list[CompletionRequest] = []
        self._lock = threading.Lock()

    def complete(self, request: CompletionRequest) -> Completion:
        with self._lock:
            self.calls.append(request)
        failure = self.failures.get(request.model)
        if failure is not None:
            raise failure
        user_text = request.messages[-1]["content"]
        if callable(self.replies):
            text = self.replies(user_text, request.model)
        else:
            text = self.replies or model_reply()
        return Completion(text=text, input_tokens=120, output_tokens=40)

    @property
    def models_called(self) -> list[str]:
        return [call.model for call in self.calls]


class FakeRetriever:
    """Stand-in for the knowledge search client."""

    def __init__(self, result: RetrievalResult | None = None, error: Exception | None = None) -> None:
        self.result = result or RetrievalResult.empty()
        self.error = error
        self.calls: list[dict] = []

    def retrieve(self, query: str, tenant_id: str, **kwargs) -> RetrievalResult:
        self.calls.append({"query": query, "tenant_id": tenant_id, **kwargs})
        if self.error is not None:
            raise self.error
        return self.result

    def usage_stats(self, tenant_id: str | None = None) -> dict[str, dict[str, int]]:
        return {}


def issue_token(
    *,
    roles: tuple[str, ...] = ("admin",),
    tenant_id: str | None = None,
    operator_id: str = "op1",
    secret: str = TOKEN_SECRET,
    **extra_claims,
) -> str:
    """Generate a signed dashboard token for admin route tests."""

    payload: dict[str, object] = {
        "operator_id": operator_id,
        "roles": list(roles),
        "aud": "civichub",
        "iss": "civichub-dashboard",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    if tenant_id is not None:
        payload["tenant_id"] = tenant_id
    payload.update(extra_claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def retriever() -> FakeRetriever:
    return FakeRetriever()


@pytest.fixture
def settings() -> Settings:
    # reply caching is covered by its own tests
    return Settings(cache_enabled=False)


@pytest.fixture
def services(settings, provider, retriever, clock):
    services = build_services(settings, provider=provider, retriever=retriever, clock=clock)
    yield services
    services.shutdown()


@pytest.fixture
def app_env(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> None:
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ADMIN_TOKEN_SECRET", TOKEN_SECRET)
    monkeypatch.delenv("INTERNAL_API_KEY", raising=False)


@pytest.fixture
def client(app_env, services):
    from fastapi.testclient import TestClient

    from civichub.core.throttling import limiter
    from civichub.main import create_app

    limiter.reset()
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture
def auth_header() -> Callable[..., dict[str, str]]:
    def _header(role: str = "admin", tenant_id: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(roles=(role,), tenant_id=tenant_id)}"}

    return _header

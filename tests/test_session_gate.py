"""
tests/test_session_gate.py -- Tests for the session gate middleware.

Two levels:
  - A bare FastAPI app with SessionGateMiddleware and an injected
    StaticSessionProvider, so the gate is tested without the store.
  - The real app with a provider swapped in through the lifespan, for the
    end-to-end scenarios (/ with and without a session, ungated paths,
    provider faults).

We assert on Location headers directly -- following redirects would hide them.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from auth.gate import SessionGateMiddleware, path_matches
from tests.fakes import FailingProvider, StaticSessionProvider, make_session_data
from web.routes import router as web_router


def _gated_app(provider, matcher=("/",)) -> FastAPI:
    app = FastAPI()

    @app.get("/")
    async def root():
        return PlainTextResponse("home")

    @app.get("/other-path")
    async def other():
        return PlainTextResponse("other")

    @app.get("/sign-in")
    async def sign_in():
        return PlainTextResponse("sign in")

    @app.get("/app/{rest:path}")
    async def nested(rest: str):
        return PlainTextResponse(rest)

    app.add_middleware(SessionGateMiddleware, matcher=list(matcher), sign_in_path="/sign-in", provider=provider)
    return app


@pytest.fixture
def fake_provider() -> StaticSessionProvider:
    return StaticSessionProvider({"valid-token": make_session_data()})


class TestPathMatching:
    @pytest.mark.parametrize(
        ("path", "patterns", "expected"),
        [
            ("/", ["/"], True),
            ("/other-path", ["/"], False),
            ("/sign-in", ["/"], False),
            ("/app/settings", ["/app*"], True),
            ("/app", ["/app*"], True),
            ("/apple", ["/app/*"], False),
            ("/", [], False),
            ("/dashboard", ["/", "/dashboard"], True),
        ],
    )
    def test_path_matches(self, path: str, patterns: list[str], expected: bool) -> None:
        assert path_matches(path, patterns) is expected


class TestGateDecision:
    """Admit with a valid session, redirect without one."""

    def test_valid_session_passes_through(self, fake_provider: StaticSessionProvider) -> None:
        client = TestClient(_gated_app(fake_provider), follow_redirects=False)
        resp = client.get("/", headers={"Cookie": "session=valid-token"})
        assert resp.status_code == 200
        assert resp.text == "home"
        assert fake_provider.calls == 1

    def test_missing_session_redirects_to_sign_in(self, fake_provider: StaticSessionProvider) -> None:
        client = TestClient(_gated_app(fake_provider), follow_redirects=False)
        resp = client.get("/")
        assert resp.status_code == 307
        assert resp.headers["location"] == "http://testserver/sign-in"

    def test_unknown_token_redirects(self, fake_provider: StaticSessionProvider) -> None:
        client = TestClient(_gated_app(fake_provider), follow_redirects=False)
        resp = client.get("/", headers={"Cookie": "session=expired-or-forged"})
        assert resp.status_code == 307
        assert resp.headers["location"].endswith("/sign-in")

    def test_redirect_preserves_scheme_host_and_port(self, fake_provider: StaticSessionProvider) -> None:
        client = TestClient(_gated_app(fake_provider), base_url="https://app.example.com:8443", follow_redirects=False)
        resp = client.get("/?tab=billing")
        assert resp.status_code == 307
        assert resp.headers["location"] == "https://app.example.com:8443/sign-in"

    def test_ungated_path_never_consults_provider(self, fake_provider: StaticSessionProvider) -> None:
        client = TestClient(_gated_app(fake_provider), follow_redirects=False)
        resp = client.get("/other-path")
        assert resp.status_code == 200
        assert resp.text == "other"
        assert fake_provider.calls == 0

    def test_sign_in_path_is_not_gated(self, fake_provider: StaticSessionProvider) -> None:
        client = TestClient(_gated_app(fake_provider), follow_redirects=False)
        resp = client.get("/sign-in")
        assert resp.status_code == 200
        assert fake_provider.calls == 0

    def test_prefix_matcher_gates_nested_paths(self, fake_provider: StaticSessionProvider) -> None:
        client = TestClient(_gated_app(fake_provider, matcher=["/app/*"]), follow_redirects=False)
        assert client.get("/app/settings").status_code == 307
        assert client.get("/app/settings", headers={"Cookie": "session=valid-token"}).text == "settings"
        assert client.get("/").status_code == 200

    def test_gate_does_not_set_cookies(self, fake_provider: StaticSessionProvider) -> None:
        client = TestClient(_gated_app(fake_provider), follow_redirects=False)
        for resp in (client.get("/"), client.get("/", headers={"Cookie": "session=valid-token"})):
            assert "set-cookie" not in resp.headers

    def test_provider_fault_propagates(self) -> None:
        client = TestClient(_gated_app(FailingProvider()), follow_redirects=False)
        with pytest.raises(ConnectionError):
            client.get("/")


class TestGateOnRealApp:
    """Scenarios through the full middleware stack of the assembled app."""

    def test_root_with_valid_cookie_renders_home(self, app_with_provider) -> None:
        data = make_session_data(name="Grace")
        client = app_with_provider(StaticSessionProvider({"valid-token": data}))
        resp = client.get("/", headers={"Cookie": "session=valid-token"})
        assert resp.status_code == 200
        assert "Grace" in resp.text

    def test_root_without_cookie_redirects(self, app_with_provider) -> None:
        client = app_with_provider(StaticSessionProvider())
        resp = client.get("/")
        assert 300 <= resp.status_code < 400
        assert resp.headers["location"] == "http://testserver/sign-in"

    def test_other_path_without_cookie_is_not_redirected(self, app_with_provider) -> None:
        fake = StaticSessionProvider()
        client = app_with_provider(fake)
        resp = client.get("/other-path")
        # No such route: the request reached routing instead of being redirected.
        assert resp.status_code == 404
        assert "location" not in resp.headers
        assert fake.calls == 0

    def test_health_is_not_gated(self, app_with_provider) -> None:
        fake = StaticSessionProvider()
        client = app_with_provider(fake)
        assert client.get("/api/health").status_code == 200
        assert fake.calls == 0

    def test_provider_fault_becomes_500_not_redirect(self, app_with_provider) -> None:
        client = app_with_provider(FailingProvider(), raise_server_exceptions=False)
        resp = client.get("/")
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "internal_error"
        assert "location" not in resp.headers


def test_home_without_gate_redirects_to_sign_in_on_request_origin() -> None:
    """With "/" left out of the matcher, the page itself still sends callers to sign-in."""
    app = FastAPI()
    app.include_router(web_router)
    app.state.session_provider = StaticSessionProvider()
    client = TestClient(app, base_url="https://example.test:8443", follow_redirects=False)
    resp = client.get("/")
    assert resp.status_code == 307
    assert resp.headers["location"] == "https://example.test:8443/sign-in"

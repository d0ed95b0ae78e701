"""Tests for the credential/opt-in gate and the OAuth token cache."""
import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import RecordingTransport
from opensens.connectors import AcledConnector, GdeltConnector, RedditConnector, XTwitterConnector
from opensens.credentials import CredentialGate, OAuthProvider, TokenCache
from opensens.invoker import ConnectorInvoker

PROVIDER = OAuthProvider(
    name="acled",
    token_url="https://auth.example/oauth/token",
    grant={"grant_type": "password", "username": "a@b.c", "password": "pw", "client_id": "acled"},
    refresh_extra={"client_id": "acled"},
)


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TokenServer:
    """Fake token endpoint issuing numbered tokens."""

    def __init__(self, expires_in=86400, fail_grants=(), include_expiry=True):
        self.expires_in = expires_in
        self.fail_grants = set(fail_grants)
        self.include_expiry = include_expiry
        self.issued = 0
        self.grants = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        grant = _form(request)["grant_type"]
        self.grants.append(grant)
        if grant in self.fail_grants:
            return httpx.Response(401, json={"error": "invalid_grant"})
        self.issued += 1
        body = {"access_token": f"token-{self.issued}", "refresh_token": f"refresh-{self.issued}"}
        if self.include_expiry:
            body["expires_in"] = self.expires_in
        return httpx.Response(200, json=body)


class TestCredentialGate:
    """The gate is pure and never touches the network."""

    def test_requires_opt_in(self):
        gate = CredentialGate({"REDDIT_CLIENT_ID": "id", "REDDIT_CLIENT_SECRET": "secret"})
        reason = gate.check(RedditConnector.meta, enabled=False)
        assert "opt-in" in reason

    def test_requires_credentials(self):
        gate = CredentialGate({"REDDIT_CLIENT_ID": "id"})
        reason = gate.check(RedditConnector.meta, enabled=True)
        assert "REDDIT_CLIENT_ID + REDDIT_CLIENT_SECRET" in reason

    def test_blank_secret_counts_as_missing(self):
        gate = CredentialGate({"OPENSENS_X_BEARER_TOKEN": "   "})
        assert gate.check(XTwitterConnector.meta, enabled=True) is not None

    def test_any_credential_set_satisfies(self):
        static = CredentialGate({"ACLED_ACCESS_TOKEN": "tok"})
        oauth = CredentialGate({"ACLED_EMAIL": "a@b.c", "ACLED_PASSWORD": "pw"})
        partial = CredentialGate({"ACLED_EMAIL": "a@b.c"})
        assert static.check(AcledConnector.meta, enabled=True) is None
        assert oauth.configured_set(AcledConnector.meta) == ("ACLED_EMAIL", "ACLED_PASSWORD")
        assert "ACLED_ACCESS_TOKEN" in partial.check(AcledConnector.meta, enabled=True)

    def test_ungated_connector_always_allowed(self):
        gate = CredentialGate({})
        assert gate.check(GdeltConnector.meta, enabled=False) is None
        assert gate.has_credentials(GdeltConnector.meta)

    @pytest.mark.asyncio
    async def test_gated_call_makes_no_network_request(self, make_state, config):
        """Test a gated connector without credentials short-circuits."""
        transport = RecordingTransport(lambda r: httpx.Response(200, json={}))
        state = make_state()
        invoker = ConnectorInvoker(state, transport.client(), config)
        for connector in (RedditConnector(), XTwitterConnector(), AcledConnector()):
            signal = await invoker.invoke(connector, (0, 0, 1, 1), "3d", enabled=True)
            assert signal.credibility == 0.0
            assert signal.event_count == 0
            assert "not configured" in signal.error
        assert transport.count == 0


class TestTokenCache:
    """Tests for token reuse and renewal."""

    @pytest.mark.asyncio
    async def test_token_reused_until_margin(self, clock):
        server = TokenServer(expires_in=86400)
        transport = RecordingTransport(server)
        tokens = TokenCache(refresh_margin=3600, clock=clock)
        client = transport.client()

        assert await tokens.get_token(PROVIDER, client) == "token-1"
        clock.advance(86400 - 3601)
        assert await tokens.get_token(PROVIDER, client) == "token-1"
        assert server.grants == ["password"]

        clock.advance(2)
        assert await tokens.get_token(PROVIDER, client) == "token-2"
        assert server.grants == ["password", "refresh_token"]

    @pytest.mark.asyncio
    async def test_refresh_request_carries_refresh_token(self, clock):
        server = TokenServer(expires_in=7200)
        transport = RecordingTransport(server)
        tokens = TokenCache(clock=clock)
        client = transport.client()
        await tokens.get_token(PROVIDER, client)
        clock.advance(7200)
        await tokens.get_token(PROVIDER, client)
        form = _form(transport.requests[-1])
        assert form == {"grant_type": "refresh_token", "refresh_token": "refresh-1", "client_id": "acled"}

    @pytest.mark.asyncio
    async def test_short_lived_token_margin_clamped(self, clock):
        """Test a 10 min token is reused for 5 min rather than never."""
        server = TokenServer(expires_in=600)
        tokens = TokenCache(refresh_margin=3600, clock=clock)
        client = RecordingTransport(server).client()
        await tokens.get_token(PROVIDER, client)
        clock.advance(299)
        assert await tokens.get_token(PROVIDER, client) == "token-1"
        clock.advance(2)
        assert await tokens.get_token(PROVIDER, client) == "token-2"

    @pytest.mark.asyncio
    async def test_failed_refresh_falls_back_to_full_auth(self, clock):
        server = TokenServer(expires_in=3600, fail_grants={"refresh_token"})
        tokens = TokenCache(clock=clock)
        client = RecordingTransport(server).client()
        await tokens.get_token(PROVIDER, client)
        clock.advance(3000)
        assert await tokens.get_token(PROVIDER, client) == "token-2"
        assert server.grants == ["password", "refresh_token", "password"]

    @pytest.mark.asyncio
    async def test_failed_renewal_keeps_unexpired_token(self, clock):
        server = TokenServer(expires_in=7200)
        tokens = TokenCache(clock=clock)
        client = RecordingTransport(server).client()
        await tokens.get_token(PROVIDER, client)
        server.fail_grants = {"refresh_token", "password"}
        clock.advance(5000)
        assert await tokens.get_token(PROVIDER, client) == "token-1"
        assert tokens.cached("acled").access_token == "token-1"

    @pytest.mark.asyncio
    async def test_expired_token_not_returned(self, clock):
        server = TokenServer(expires_in=7200)
        tokens = TokenCache(clock=clock)
        client = RecordingTransport(server).client()
        await tokens.get_token(PROVIDER, client)
        server.fail_grants = {"refresh_token", "password"}
        clock.advance(7201)
        assert await tokens.get_token(PROVIDER, client) is None
        assert tokens.cached("acled") is not None

    @pytest.mark.asyncio
    async def test_missing_expiry_defaults_to_a_day(self, clock):
        tokens = TokenCache(clock=clock)
        client = RecordingTransport(TokenServer(include_expiry=False)).client()
        await tokens.get_token(PROVIDER, client)
        assert tokens.cached("acled").expires_at == pytest.approx(clock() + 86400)

    @pytest.mark.asyncio
    async def test_concurrent_refreshers_share_one_exchange(self, clock):
        server = TokenServer()
        transport = RecordingTransport(server)
        tokens = TokenCache(clock=clock)
        client = transport.client()
        results = await asyncio.gather(*(tokens.get_token(PROVIDER, client) for _ in range(5)))
        assert set(results) == {"token-1"}
        assert transport.count == 1

    @pytest.mark.asyncio
    async def test_network_error_returns_none(self, clock):
        def boom(request):
            raise httpx.ConnectError("down", request=request)

        tokens = TokenCache(clock=clock)
        assert await tokens.get_token(PROVIDER, RecordingTransport(boom).client()) is None

    @pytest.mark.asyncio
    async def test_basic_auth_sent(self, clock):
        server = TokenServer()
        transport = RecordingTransport(server)
        provider = OAuthProvider(
            name="reddit",
            token_url="https://www.reddit.com/api/v1/access_token",
            grant={"grant_type": "client_credentials"},
            basic_auth=("id", "secret"),
        )
        await TokenCache(clock=clock).get_token(provider, transport.client())
        assert transport.requests[0].headers["Authorization"].startswith("Basic ")

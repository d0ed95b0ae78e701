"""Credential/opt-in gate and OAuth token cache.

The gate is pure: it inspects connector metadata, caller enablement and
the configured secrets, and never touches the network. The token cache
backs connectors that exchange credentials for bearer tokens (ACLED
password grant, Reddit client-credentials). Tokens are reused until they
come within the refresh margin of expiry; renewal tries the refresh-token
grant first, then full authentication. One asyncio.Lock per provider keeps
concurrent refreshers on a single outbound exchange, and a failed renewal
never discards a token that has not actually expired.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple

import httpx

from .core.logger import get_logger
from .signals import ConnectorMetadata

logger = get_logger(__name__)

DEFAULT_TOKEN_LIFETIME = 86400.0   # used when the server omits expires_in
TOKEN_REQUEST_TIMEOUT = 10.0


class CredentialGate:
    """Decides whether a connector may run for a given request."""

    def __init__(self, secrets: Mapping[str, str]):
        self._secrets = {k: (v or "").strip() for k, v in secrets.items()}

    def secret(self, name: str) -> str:
        return self._secrets.get(name, "")

    def configured_set(self, meta: ConnectorMetadata) -> Optional[Tuple[str, ...]]:
        """First credential set whose secrets are all present."""
        for names in meta.credential_sets:
            if all(self.secret(n) for n in names):
                return names
        return None

    def has_credentials(self, meta: ConnectorMetadata) -> bool:
        if not meta.credential_sets:
            return True
        return self.configured_set(meta) is not None

    def check(self, meta: ConnectorMetadata, enabled: bool) -> Optional[str]:
        """Return None when the connector may run, else the reason it may not."""
        if meta.requires_opt_in and not enabled:
            return f"{meta.id} requires explicit opt-in"
        if meta.is_gated and not self.has_credentials(meta):
            options = " or ".join(" + ".join(names) for names in meta.credential_sets)
            return f"{meta.id} connector not configured; set {options} and enable it explicitly"
        return None


@dataclass(frozen=True)
class OAuthProvider:
    name: str
    token_url: str
    grant: Dict[str, str]                      # full authentication form
    basic_auth: Optional[Tuple[str, str]] = None
    refresh_extra: Dict[str, str] = field(default_factory=dict)

    def refresh_form(self, refresh_token: str) -> Dict[str, str]:
        return {"grant_type": "refresh_token", "refresh_token": refresh_token, **self.refresh_extra}


@dataclass
class OAuthToken:
    access_token: str
    refresh_token: Optional[str]
    expires_at: float
    lifetime: float


class TokenCache:
    def __init__(
        self,
        refresh_margin: float = 3600.0,
        clock: Callable[[], float] = time.time,
        user_agent: str = "OpenSens-OSINT/1.0",
    ):
        self.refresh_margin = refresh_margin
        self._clock = clock
        self._user_agent = user_agent
        self._tokens: Dict[str, OAuthToken] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def cached(self, provider_name: str) -> Optional[OAuthToken]:
        return self._tokens.get(provider_name)

    async def get_token(self, provider: OAuthProvider, client: httpx.AsyncClient) -> Optional[str]:
        """Return a usable bearer token, or None if none can be obtained."""
        token = self._tokens.get(provider.name)
        if token is not None and self._reusable(token):
            return token.access_token

        lock = self._locks.setdefault(provider.name, asyncio.Lock())
        async with lock:
            # A concurrent refresher may have finished while we waited
            token = self._tokens.get(provider.name)
            if token is not None and self._reusable(token):
                return token.access_token

            if token is not None and token.refresh_token:
                if await self._request(provider, client, provider.refresh_form(token.refresh_token)):
                    return self._tokens[provider.name].access_token
                logger.info("oauth_refresh_failed_falling_back", provider=provider.name)

            if await self._request(provider, client, provider.grant):
                return self._tokens[provider.name].access_token

            if token is not None and self._clock() < token.expires_at:
                logger.warning("oauth_renewal_failed_using_existing", provider=provider.name)
                return token.access_token
            return None

    def _reusable(self, token: OAuthToken) -> bool:
        margin = min(self.refresh_margin, token.lifetime / 2)
        return self._clock() < token.expires_at - margin

    async def _request(
        self,
        provider: OAuthProvider,
        client: httpx.AsyncClient,
        form: Dict[str, str],
    ) -> bool:
        try:
            resp = await client.post(
                provider.token_url,
                data=form,
                auth=provider.basic_auth,
                headers={"User-Agent": self._user_agent},
                timeout=TOKEN_REQUEST_TIMEOUT,
            )
        except httpx.HTTPError as e:
            logger.warning("oauth_request_failed", provider=provider.name, error=type(e).__name__)
            return False

        if resp.status_code != 200:
            logger.warning("oauth_request_rejected", provider=provider.name, status=resp.status_code)
            return False
        try:
            data = resp.json()
        except ValueError:
            logger.warning("oauth_response_not_json", provider=provider.name)
            return False

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            return False

        previous = self._tokens.get(provider.name)
        try:
            lifetime = float(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME
        self._tokens[provider.name] = OAuthToken(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or (previous.refresh_token if previous else None),
            expires_at=self._clock() + lifetime,
            lifetime=lifetime,
        )
        logger.info("oauth_token_obtained", provider=provider.name, expires_in=lifetime)
        return True

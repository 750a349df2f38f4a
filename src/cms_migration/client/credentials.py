"""Credential broker for the source platform.

The broker owns the one authenticated SourceClient of a migration run. It
tries Basic auth, then an OAuth2 password grant, then a session cookie,
keeps the first handle whose probe succeeds, and forgets it again when a
caller reports a 401.
"""

import asyncio
from abc import ABC, abstractmethod

import httpx

from cms_migration.client.base_client import BaseAPIClient
from cms_migration.client.exceptions import (
    AuthenticationError,
    AuthExhaustedError,
    CMSMigrationError,
)
from cms_migration.client.source_client import SourceClient
from cms_migration.config import SourceConfig
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)

SESSION_COOKIE_PREFIXES = ("SESS", "SSESS")


class AuthStrategy(ABC):
    """One way of obtaining an authenticated SourceClient."""

    name: str = "strategy"

    def __init__(
        self,
        config: SourceConfig,
        rate_limit: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
        log_payloads: bool = False,
    ):
        self.config = config
        self.rate_limit = rate_limit
        self.transport = transport
        self.log_payloads = log_payloads

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the credentials this strategy needs are present."""

    @abstractmethod
    async def build_client(self) -> SourceClient:
        """Obtain credentials and return an unprobed client."""

    async def authenticate(self) -> SourceClient:
        """Build a client and verify it against the probe endpoint.

        The client is closed again if the probe fails.
        """
        client = await self.build_client()
        try:
            await client.probe()
        except Exception:
            await client.close()
            raise
        return client

    def _client(self, **kwargs) -> SourceClient:
        return SourceClient(
            config=self.config,
            strategy=self.name,
            rate_limit=self.rate_limit,
            transport=self.transport,
            log_payloads=self.log_payloads,
            **kwargs,
        )

    def _site_client(self) -> BaseAPIClient:
        """Client against the site root for token and login endpoints."""
        return BaseAPIClient(
            base_url=self.config.url,
            verify_ssl=self.config.verify_ssl,
            timeout=self.config.timeout,
            rate_limit=0,
            force_ipv4=self.config.force_ipv4,
            transport=self.transport,
            log_payloads=self.log_payloads,
        )


class BasicAuthStrategy(AuthStrategy):
    """HTTP Basic credentials sent with every request."""

    name = "basic"

    def is_configured(self) -> bool:
        return bool(self.config.username and self.config.password)

    async def build_client(self) -> SourceClient:
        return self._client(auth=httpx.BasicAuth(self.config.username, self.config.password))


class OAuthPasswordStrategy(AuthStrategy):
    """OAuth2 password grant exchanged at ``POST /oauth/token``."""

    name = "oauth"

    def is_configured(self) -> bool:
        return bool(self.config.username and self.config.password and self.config.oauth_client_id)

    async def build_client(self) -> SourceClient:
        form = {
            "grant_type": "password",
            "client_id": self.config.oauth_client_id,
            "username": self.config.username,
            "password": self.config.password,
        }
        if self.config.oauth_client_secret:
            form["client_secret"] = self.config.oauth_client_secret

        async with self._site_client() as site:
            response = await site.send(
                "POST",
                "/oauth/token",
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        token = response.json().get("access_token")
        if not token:
            raise AuthenticationError("Token endpoint returned no access_token")

        return self._client(headers={"Authorization": f"Bearer {token}"})


class SessionCookieStrategy(AuthStrategy):
    """Session cookie from configuration or from ``POST /user/login``."""

    name = "cookie"

    def is_configured(self) -> bool:
        return bool(self.config.session_cookie or (self.config.username and self.config.password))

    async def build_client(self) -> SourceClient:
        cookie = self.config.session_cookie or await self._login()
        return self._client(headers={"Cookie": cookie})

    async def _login(self) -> str:
        async with self._site_client() as site:
            response = await site.send(
                "POST",
                "/user/login",
                params={"_format": "json"},
                json_data={"name": self.config.username, "pass": self.config.password},
            )

        session_cookies = [
            f"{name}={value}"
            for name, value in response.cookies.items()
            if name.startswith(SESSION_COOKIE_PREFIXES)
        ]
        if not session_cookies:
            raise AuthenticationError("Login response carried no session cookie")
        return "; ".join(session_cookies)


DEFAULT_STRATEGIES: tuple[type[AuthStrategy], ...] = (
    BasicAuthStrategy,
    OAuthPasswordStrategy,
    SessionCookieStrategy,
)


class CredentialBroker:
    """Produces and memoizes the authenticated source handle.

    Args:
        config: Source platform configuration
        strategies: Strategy instances in fallback order (defaults to
            Basic, OAuth2 password grant, session cookie)
        rate_limit: Requests per second for produced clients
        transport: Custom transport shared by every produced client
        log_payloads: Enable payload logging on produced clients
    """

    def __init__(
        self,
        config: SourceConfig,
        strategies: list[AuthStrategy] | None = None,
        rate_limit: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
        log_payloads: bool = False,
    ):
        self.config = config
        self.strategies = strategies or [
            strategy_cls(
                config, rate_limit=rate_limit, transport=transport, log_payloads=log_payloads
            )
            for strategy_cls in DEFAULT_STRATEGIES
        ]
        self._client: SourceClient | None = None
        self._lock = asyncio.Lock()

    @property
    def is_authenticated(self) -> bool:
        return self._client is not None

    async def get_authenticated_client(self) -> SourceClient:
        """Return the memoized client, running the strategy chain on first use.

        Raises:
            AuthExhaustedError: If no strategy produced a working client
        """
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is None:
                self._client = await self._authenticate()
        return self._client

    async def _authenticate(self) -> SourceClient:
        attempts: dict[str, str] = {}

        for strategy in self.strategies:
            if not strategy.is_configured():
                logger.debug("auth_strategy_not_configured", strategy=strategy.name)
                continue

            logger.info("auth_strategy_attempt", strategy=strategy.name)
            try:
                client = await strategy.authenticate()
            except (CMSMigrationError, httpx.HTTPError) as e:
                attempts[strategy.name] = str(e)
                logger.warning("auth_strategy_failed", strategy=strategy.name, error=str(e))
                continue

            logger.info("auth_strategy_succeeded", strategy=strategy.name)
            return client

        logger.error("auth_exhausted", attempts=attempts)
        raise AuthExhaustedError("All source authentication strategies failed", attempts)

    async def reset_authentication(self) -> None:
        """Forget the memoized client so the next call re-runs the chain."""
        client, self._client = self._client, None
        if client is not None:
            logger.info("auth_reset", strategy=client.strategy)
            await client.close()

    async def close(self) -> None:
        await self.reset_authentication()

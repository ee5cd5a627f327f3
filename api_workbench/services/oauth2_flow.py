"""
OAuth2 token flows: authorization code (optionally with PKCE), client
credentials and refresh token.

Every entry point takes an ``OAuth2Config`` and an optional ``Environment``
(used to interpolate URLs and credentials) and returns an
``OAuth2TokenResponse``. Failures raise ``OAuth2Error`` subclasses.
"""

import asyncio
import hashlib
import inspect
import secrets
import time
import webbrowser
from base64 import urlsafe_b64encode
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from ..config import DEFAULT_OAUTH_CALLBACK_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
from ..exceptions import OAuth2ConfigError, OAuth2Error
from ..log import get_logger
from ..schemas.auth import OAuth2Config, OAuth2TokenResponse
from ..schemas.environment import Environment
from .auth import append_query
from .oauth2_callback import CallbackListener
from .variable_substitution import VariableResolver


log = get_logger("oauth2")

BrowserOpener = Callable[[str], Union[Any, Awaitable[Any]]]


def generate_state() -> str:
    return secrets.token_hex(16)


def generate_code_verifier() -> str:
    return urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def parse_token_response(data: dict, previous_refresh_token: Optional[str] = None) -> OAuth2TokenResponse:
    access_token = data.get("access_token")
    if not access_token:
        raise OAuth2Error("Token response did not include an access_token")

    expires_in = data.get("expires_in")
    try:
        expires_in = int(expires_in) if expires_in is not None else None
    except (TypeError, ValueError):
        expires_in = None

    return OAuth2TokenResponse(
        access_token=access_token,
        token_type=data.get("token_type") or "Bearer",
        expires_in=expires_in,
        refresh_token=data.get("refresh_token") or previous_refresh_token,
        scope=data.get("scope"),
        expires_at=time.time() + expires_in if expires_in is not None else None,
    )


class OAuth2Flow:
    """Runs OAuth2 grants against a token endpoint."""

    def __init__(
        self,
        callback_timeout: float = DEFAULT_OAUTH_CALLBACK_TIMEOUT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        open_browser: BrowserOpener = webbrowser.open,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.callback_timeout = callback_timeout
        self.request_timeout = request_timeout
        self.open_browser = open_browser
        self._transport = transport

    async def start_auth_code_flow(
        self,
        config: OAuth2Config,
        environment: Optional[Environment] = None,
    ) -> OAuth2TokenResponse:
        resolver = VariableResolver(environment)
        auth_url = resolver.resolve(config.auth_url)
        token_url = resolver.resolve(config.token_url)
        client_id = resolver.resolve(config.client_id)
        scope = resolver.resolve(config.scope)
        audience = resolver.resolve(config.audience)

        if not auth_url:
            raise OAuth2ConfigError("Authorization URL is required")
        if not token_url:
            raise OAuth2ConfigError("Token URL is required")
        if not client_id:
            raise OAuth2ConfigError("Client ID is required")

        state = generate_state()
        code_verifier = generate_code_verifier() if config.use_pkce else None

        async with CallbackListener(state) as listener:
            params = {
                "response_type": "code",
                "client_id": client_id,
                "redirect_uri": listener.redirect_uri,
                "state": state,
            }
            if scope:
                params["scope"] = scope
            if audience:
                params["audience"] = audience
            if code_verifier:
                params["code_challenge"] = generate_code_challenge(code_verifier)
                params["code_challenge_method"] = "S256"

            await self._open(append_query(auth_url, params))
            code = await listener.wait_for_code(self.callback_timeout)

            form = {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": listener.redirect_uri,
                "client_id": client_id,
            }
            client_secret = resolver.resolve(config.client_secret)
            if client_secret:
                form["client_secret"] = client_secret
            if code_verifier:
                form["code_verifier"] = code_verifier

            return await self._request_tokens(token_url, form)

    async def client_credentials_flow(
        self,
        config: OAuth2Config,
        environment: Optional[Environment] = None,
    ) -> OAuth2TokenResponse:
        resolver = VariableResolver(environment)
        token_url = resolver.resolve(config.token_url)
        client_id = resolver.resolve(config.client_id)
        client_secret = resolver.resolve(config.client_secret)
        scope = resolver.resolve(config.scope)
        audience = resolver.resolve(config.audience)

        if not token_url:
            raise OAuth2ConfigError("Token URL is required")
        if not client_id:
            raise OAuth2ConfigError("Client ID is required")
        if not client_secret:
            raise OAuth2ConfigError("Client Secret is required for Client Credentials flow")

        form = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        }
        if scope:
            form["scope"] = scope
        if audience:
            form["audience"] = audience
        return await self._request_tokens(token_url, form)

    async def refresh_token(
        self,
        config: OAuth2Config,
        environment: Optional[Environment] = None,
    ) -> OAuth2TokenResponse:
        resolver = VariableResolver(environment)
        token_url = resolver.resolve(config.token_url)
        refresh_token = resolver.resolve(config.refresh_token)

        if not token_url:
            raise OAuth2ConfigError("Token URL is required")
        if not refresh_token:
            raise OAuth2ConfigError("Refresh token is required")

        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        client_id = resolver.resolve(config.client_id)
        client_secret = resolver.resolve(config.client_secret)
        if client_id:
            form["client_id"] = client_id
        if client_secret:
            form["client_secret"] = client_secret
        return await self._request_tokens(token_url, form, previous_refresh_token=refresh_token)

    async def _open(self, url: str) -> None:
        if inspect.iscoroutinefunction(self.open_browser):
            opened = await self.open_browser(url)
        else:
            opened = await asyncio.to_thread(self.open_browser, url)
        if opened is False:
            log.warning("Could not open a browser; open this URL to continue: {}", url)

    async def _request_tokens(
        self,
        token_url: str,
        form: dict[str, str],
        previous_refresh_token: Optional[str] = None,
    ) -> OAuth2TokenResponse:
        log.info("Requesting tokens ({}) from {}", form["grant_type"], token_url)
        try:
            async with httpx.AsyncClient(timeout=self.request_timeout, transport=self._transport) as client:
                response = await client.post(
                    token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise OAuth2Error(f"Token request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            error = data.get("error") if isinstance(data, dict) else None
            description = data.get("error_description") if isinstance(data, dict) else None
            detail = f"Token endpoint returned {response.status_code}"
            if error:
                detail = f"{detail}: {error}"
            if description:
                detail = f"{detail} ({description})"
            raise OAuth2Error(detail)

        if not isinstance(data, dict):
            raise OAuth2Error("Token endpoint returned an invalid response")
        tokens = parse_token_response(data, previous_refresh_token)
        log.info("Obtained {} token (expires in {})", tokens.token_type, tokens.expires_in)
        return tokens

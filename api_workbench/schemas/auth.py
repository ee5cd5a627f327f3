"""
Pydantic schemas for request authentication and OAuth2 token exchange.

``AuthConfig`` is a tagged union discriminated by ``type``.
"""

import time
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


GrantType = Literal["authorization_code", "client_credentials"]
ApiKeyLocation = Literal["header", "query"]


class NoAuth(BaseModel):
    type: Literal["none"] = "none"


class BasicAuth(BaseModel):
    type: Literal["basic"] = "basic"
    username: str = ""
    password: str = ""


class BearerAuth(BaseModel):
    type: Literal["bearer"] = "bearer"
    token: str = ""


class ApiKeyAuth(BaseModel):
    type: Literal["api-key"] = "api-key"
    key: str = ""
    value: str = ""
    add_to: ApiKeyLocation = "header"


class OAuth2TokenResponse(BaseModel):
    """Token set returned by every delegated-authorization entry point."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    expires_at: float | None = None


class OAuth2Config(BaseModel):
    """
    OAuth2 client configuration plus the most recently obtained tokens.

    Senders only read ``access_token``/``token_type``; the token flows read
    the client fields.
    """
    grant_type: GrantType = "authorization_code"
    use_pkce: bool = False
    client_id: str = ""
    client_secret: str = ""
    auth_url: str = ""
    token_url: str = ""
    scope: str = ""
    audience: str = ""
    access_token: str | None = None
    token_type: str | None = None
    refresh_token: str | None = None
    expires_at: float | None = None

    def with_tokens(self, tokens: OAuth2TokenResponse) -> "OAuth2Config":
        """Return a copy of this config carrying ``tokens``."""
        expires_at = tokens.expires_at
        if expires_at is None and tokens.expires_in is not None:
            expires_at = time.time() + tokens.expires_in
        return self.model_copy(update={
            "access_token": tokens.access_token,
            "token_type": tokens.token_type,
            "refresh_token": tokens.refresh_token or self.refresh_token,
            "expires_at": expires_at,
        })


class OAuth2Auth(OAuth2Config):
    type: Literal["oauth2"] = "oauth2"


class AwsSigV4Auth(BaseModel):
    type: Literal["aws-sigv4"] = "aws-sigv4"
    access_key: str = ""
    secret_key: str = ""
    region: str = "us-east-1"
    service: str = "execute-api"
    session_token: str | None = None


AuthConfig = Annotated[
    Union[NoAuth, BasicAuth, BearerAuth, ApiKeyAuth, OAuth2Auth, AwsSigV4Auth],
    Field(discriminator="type"),
]

"""
Authentication injection for outgoing requests.

Credentials are interpolated against the request environment before they
are applied. OAuth2 only injects an already obtained token; obtaining one
is the job of ``oauth2_flow``.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from urllib.parse import quote

import httpx

from ..schemas.auth import (
    ApiKeyAuth,
    AuthConfig,
    AwsSigV4Auth,
    BasicAuth,
    BearerAuth,
    OAuth2Auth,
)
from .variable_substitution import VariableResolver


def basic_credentials(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def apply_auth(
    auth: AuthConfig,
    headers: dict[str, str],
    params: dict[str, str],
    resolver: VariableResolver,
) -> None:
    """
    Add authentication to ``headers`` (and ``params`` for query API keys).

    AWS SigV4 needs the final request and is handled by ``sign_aws_sigv4``.
    """
    if isinstance(auth, BasicAuth):
        headers["Authorization"] = basic_credentials(
            resolver.resolve(auth.username), resolver.resolve(auth.password)
        )
    elif isinstance(auth, BearerAuth):
        headers["Authorization"] = f"Bearer {resolver.resolve(auth.token)}"
    elif isinstance(auth, ApiKeyAuth):
        key = resolver.resolve(auth.key)
        value = resolver.resolve(auth.value)
        if not key:
            return
        if auth.add_to == "query":
            params[key] = value
        else:
            headers[key] = value
    elif isinstance(auth, OAuth2Auth):
        if auth.access_token:
            token_type = auth.token_type or "Bearer"
            headers["Authorization"] = f"{token_type} {resolver.resolve(auth.access_token)}"


def auth_metadata(auth: AuthConfig, resolver: VariableResolver) -> list[tuple[str, str]]:
    """Authentication entries for RPC metadata. API keys always go to metadata."""
    headers: dict[str, str] = {}
    params: dict[str, str] = {}
    apply_auth(auth, headers, params, resolver)
    headers.update(params)
    return [(key.lower(), value) for key, value in headers.items()]


def append_query(url: str, params: dict[str, str]) -> str:
    """Return ``url`` with ``params`` merged into its query string."""
    if not params:
        return url
    return str(httpx.URL(url).copy_merge_params(params))


def _sign(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def _uri_encode(value: str) -> str:
    return quote(value, safe="-_.~")


def sign_aws_sigv4(
    request: httpx.Request,
    auth: AwsSigV4Auth,
    resolver: VariableResolver,
    now: datetime | None = None,
) -> None:
    """Sign ``request`` in place with AWS Signature Version 4."""
    access_key = resolver.resolve(auth.access_key)
    secret_key = resolver.resolve(auth.secret_key)
    region = resolver.resolve(auth.region)
    service = resolver.resolve(auth.service)
    session_token = resolver.resolve(auth.session_token) if auth.session_token else ""

    now = now or datetime.now(timezone.utc)
    amz_date = now.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = now.strftime("%Y%m%d")

    payload_hash = hashlib.sha256(request.read()).hexdigest()
    request.headers["X-Amz-Date"] = amz_date
    request.headers["X-Amz-Content-Sha256"] = payload_hash
    if session_token:
        request.headers["X-Amz-Security-Token"] = session_token

    signed = {
        "host": request.url.netloc.decode("ascii"),
        "x-amz-content-sha256": payload_hash,
        "x-amz-date": amz_date,
    }
    if session_token:
        signed["x-amz-security-token"] = session_token
    signed_headers = ";".join(sorted(signed))
    canonical_headers = "".join(f"{name}:{signed[name].strip()}\n" for name in sorted(signed))

    canonical_query = "&".join(
        f"{_uri_encode(key)}={_uri_encode(value)}"
        for key, value in sorted(request.url.params.multi_items())
    )
    canonical_request = "\n".join([
        request.method,
        quote(request.url.path or "/", safe="/-_.~"),
        canonical_query,
        canonical_headers,
        signed_headers,
        payload_hash,
    ])

    scope = f"{date_stamp}/{region}/{service}/aws4_request"
    string_to_sign = "\n".join([
        "AWS4-HMAC-SHA256",
        amz_date,
        scope,
        hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
    ])

    signing_key = _sign(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    for part in (region, service, "aws4_request"):
        signing_key = _sign(signing_key, part)
    signature = hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    request.headers["Authorization"] = (
        f"AWS4-HMAC-SHA256 Credential={access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )

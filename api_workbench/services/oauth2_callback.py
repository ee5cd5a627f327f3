"""
Loopback listener for the OAuth2 authorization-code redirect.

The listener is a small FastAPI app served by uvicorn on a socket bound to
``127.0.0.1:0``. It accepts exactly one callback on ``/callback`` and is
used as an async context manager so the server is stopped on every exit
path.
"""

import asyncio
import contextlib
import html
import socket
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse, PlainTextResponse

from ..exceptions import OAuth2Error, OAuth2StateMismatchError, OAuth2TimeoutError
from ..log import get_logger


log = get_logger("oauth2")

STARTUP_TIMEOUT_SECONDS = 5.0

SUCCESS_PAGE = """<!DOCTYPE html>
<html>
<head><title>Authorization Successful</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 3rem;">
  <h1>Authorization Successful</h1>
  <p>You can close this window and return to the workbench.</p>
</body>
</html>
"""

ERROR_PAGE = """<!DOCTYPE html>
<html>
<head><title>Authorization Failed</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 3rem;">
  <h1>Authorization Failed</h1>
  <p>{description}</p>
  <code>{error}</code>
</body>
</html>
"""


def error_page(error: str, description: Optional[str] = None) -> str:
    return ERROR_PAGE.format(
        error=html.escape(error),
        description=html.escape(description or "An error occurred during authorization."),
    )


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves the host process's signal handlers alone."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class CallbackListener:
    """
    One-shot receiver for the authorization redirect.

    Usage::

        async with CallbackListener(state) as listener:
            open_browser(url_with(listener.redirect_uri))
            code = await listener.wait_for_code(timeout=300)
    """

    def __init__(self, expected_state: str, host: str = "127.0.0.1"):
        self.expected_state = expected_state
        self.host = host
        self.port: Optional[int] = None
        self._result: Optional[asyncio.Future] = None
        self._socket: Optional[socket.socket] = None
        self._server: Optional[_EmbeddedServer] = None
        self._serve_task: Optional[asyncio.Task] = None
        self.app = self._build_app()

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}/callback"

    def _build_app(self) -> FastAPI:
        app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)

        @app.get("/callback")
        async def callback(
            code: Optional[str] = None,
            state: Optional[str] = None,
            error: Optional[str] = None,
            error_description: Optional[str] = None,
        ):
            if self._result is None or self._result.done():
                return PlainTextResponse("Callback already handled", status_code=409)

            if state != self.expected_state:
                log.warning("Rejected authorization callback with mismatched state")
                self._result.set_exception(OAuth2StateMismatchError())
                return HTMLResponse(
                    error_page("invalid_state", "State parameter mismatch. This may be a CSRF attack."),
                    status_code=400,
                )

            if error:
                self._result.set_exception(OAuth2Error(error_description or error))
                return HTMLResponse(error_page(error, error_description), status_code=400)

            if not code:
                self._result.set_exception(OAuth2Error("No authorization code received"))
                return HTMLResponse(
                    error_page("missing_code", "No authorization code received."),
                    status_code=400,
                )

            self._result.set_result(code)
            return HTMLResponse(SUCCESS_PAGE)

        return app

    async def __aenter__(self) -> "CallbackListener":
        self._result = asyncio.get_running_loop().create_future()

        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind((self.host, 0))
        self.port = self._socket.getsockname()[1]

        config = uvicorn.Config(self.app, log_level="warning", access_log=False, lifespan="off")
        self._server = _EmbeddedServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))

        deadline = asyncio.get_running_loop().time() + STARTUP_TIMEOUT_SECONDS
        while not self._server.started:
            if self._serve_task.done() or asyncio.get_running_loop().time() > deadline:
                await self._stop()
                raise OAuth2Error("Failed to start the authorization callback listener")
            await asyncio.sleep(0.01)

        log.debug("Authorization callback listener on port {}", self.port)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._stop()

    async def _stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            await self._serve_task
            self._serve_task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if self._result is not None and not self._result.done():
            self._result.cancel()
        log.debug("Authorization callback listener closed")

    async def wait_for_code(self, timeout: float) -> str:
        """Wait for the callback and return the authorization code."""
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except asyncio.TimeoutError:
            raise OAuth2TimeoutError(timeout) from None

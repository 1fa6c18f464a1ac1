"""HTTP transport: one ``GET /cm?cmnd=...`` per command."""

from __future__ import annotations

from typing import Any

import aiohttp

from tasmota_control.commands import Command
from tasmota_control.config import HttpConfig
from tasmota_control.exceptions import CommandTimeoutError, ProtocolError, TasmotaConnectionError
from tasmota_control.logging_abstraction import get_logger
from tasmota_control.state.parsers import decode_object, update_from_payload
from tasmota_control.transport.types import Reply, StateSink

logger = get_logger(__name__)


class HttpTransport:
    """Talks to one device over its web command endpoint.

    The reply comes back in the HTTP response body, so there is nothing to
    correlate. A shared aiohttp session may be passed in; otherwise one is
    created on first use and closed with the transport.
    """

    name: str = "http"

    def __init__(self, config: HttpConfig, *, session: aiohttp.ClientSession | None = None) -> None:
        self.config: HttpConfig = config
        self.http_session: aiohttp.ClientSession | None = session
        self._owns_session: bool = session is None
        self._sink: StateSink | None = None
        self.lp: str = f"http[{config.host}]:"

    @property
    def device_id(self) -> str:
        return self.config.host

    @property
    def url(self) -> str:
        return f"{self.config.base_url}/cm"

    def bind(self, sink: StateSink) -> None:
        self._sink = sink

    async def open(self) -> None:
        await self._check_session()

    async def _check_session(self) -> aiohttp.ClientSession:
        if self.http_session is None or self.http_session.closed:
            logger.debug("%s creating aiohttp ClientSession", self.lp)
            self.http_session = aiohttp.ClientSession()
            self._owns_session = True
        return self.http_session

    async def close(self) -> None:
        lp = f"{self.lp}close:"
        if self._owns_session and self.http_session is not None and not self.http_session.closed:
            logger.debug("%s closing aiohttp ClientSession", lp)
            await self.http_session.close()
        self.http_session = None

    def _params(self, command: Command) -> dict[str, str]:
        params = {"cmnd": command.to_http_command()}
        if self.config.username is not None:
            params["user"] = self.config.username
        if self.config.password is not None:
            params["password"] = self.config.password
        return params

    async def send(self, command: Command, timeout: float | None = None) -> Reply:
        """Run ``command`` and return the decoded response body.

        Raises:
            CommandTimeoutError: No response within the timeout
            TasmotaConnectionError: Unreachable device, rejected credentials, non-2xx status
            ProtocolError: The body is not a JSON object

        """
        lp = f"{self.lp}send:"
        limit = timeout if timeout is not None else self.config.timeout
        sesh = await self._check_session()
        logger.debug(
            "%s GET %s cmnd=%s",
            lp,
            self.url,
            command.to_http_command(),
            extra={"device": self.device_id, "transport": "http", "command": command.name},
        )
        try:
            resp = await sesh.get(
                self.url,
                params=self._params(command),
                timeout=aiohttp.ClientTimeout(total=limit),
            )
            status = resp.status
            text = await resp.text()
        except TimeoutError:
            raise CommandTimeoutError(command.name, limit, self.device_id) from None
        except aiohttp.ClientError as e:
            raise TasmotaConnectionError(f"{self.device_id} unreachable: {e}", "http") from e

        if status == 401:
            raise TasmotaConnectionError(f"{self.device_id} rejected the credentials", "http")
        if not 200 <= status < 300:
            raise TasmotaConnectionError(f"{self.device_id} answered HTTP {status}", "http")

        body = decode_object(text)
        if body is None:
            raise ProtocolError(f"{self.device_id} answered '{command}' with a non-object body", text)

        self._apply(body)
        return Reply(device=self.device_id, command=command.name, body=body)

    def _apply(self, body: dict[str, Any]) -> None:
        lp = f"{self.lp}apply:"
        if self._sink is None or body.get("Command") in ("Unknown", "Error"):
            return
        try:
            update = update_from_payload(body)
        except ProtocolError as err:
            logger.warning("%s reply carried unusable state: %s", lp, err.reason)
            return
        if not update.is_empty:
            self._sink(update)

"""Process-wide registry of broker sessions."""

from __future__ import annotations

from tasmota_control.config import BrokerConfig
from tasmota_control.exceptions import TasmotaConnectionError
from tasmota_control.logging_abstraction import get_logger
from tasmota_control.transport.session import BrokerSession, ClientFactory

logger = get_logger(__name__)


class BrokerPool:
    """Hands out one shared session per broker endpoint and credentials.

    Sessions created here close themselves when their last transport
    detaches and are then forgotten, so the next ``acquire`` reconnects.
    """

    lp: str = "pool:"

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory
        self._sessions: dict[tuple[str, int, str | None, str | None], BrokerSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, config: object) -> bool:
        return isinstance(config, BrokerConfig) and config.endpoint_key in self._sessions

    async def acquire(self, config: BrokerConfig | None = None) -> BrokerSession:
        """Return the started session for ``config``'s endpoint, creating it if needed.

        Raises:
            TasmotaConnectionError: The broker could not be reached

        """
        lp = f"{self.lp}acquire:"
        config = config or BrokerConfig()
        key = config.endpoint_key
        session = self._sessions.get(key)
        if session is None or session.closed:
            logger.debug("%s new session for %s", lp, config.label)
            session = BrokerSession(
                config,
                client_factory=self._client_factory,
                close_when_idle=True,
                on_idle=self._forget,
            )
            self._sessions[key] = session
        try:
            await session.start()
        except TasmotaConnectionError:
            self._forget(session)
            raise
        return session

    async def release(self, session: BrokerSession) -> None:
        """Close and forget ``session`` if no transport is attached to it any more."""
        if session.attached_count:
            logger.debug("%s %s still has %d transport(s)", f"{self.lp}release:", session.config.label, session.attached_count)
            return
        self._forget(session)
        await session.close()

    def _forget(self, session: BrokerSession) -> None:
        key = session.config.endpoint_key
        if self._sessions.get(key) is session:
            del self._sessions[key]

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close()


default_pool = BrokerPool()

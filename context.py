"""Application context passed to every lock operation."""

from __future__ import annotations

import logging

from code_store import CodeCipher, CodeStore, load_encryption_key
from config import Config
from connection import ConnectionManager, Connector
from events import EventFeed

_LOGGER = logging.getLogger(__name__)


class AppContext:
    """Configuration, driver connection, code store and event feed.

    The caller owns the lifecycle: create one per process (or per CLI
    command) and call ``shutdown()`` when done.
    """

    def __init__(
        self,
        config: Config,
        codes: CodeStore,
        connector: Connector | None = None,
        generated_key: str | None = None,
    ):
        self.config = config
        self.codes = codes
        self.events = EventFeed()
        self.connection = ConnectionManager(
            config, connector=connector, on_event=self.events.publish
        )
        # Hex of a key generated for this run, which the operator must save
        self.generated_key = generated_key

    @classmethod
    def create(cls, config: Config, connector: Connector | None = None) -> AppContext:
        """Build a context, loading the code encryption key from the environment."""
        key, generated = load_encryption_key()
        codes = CodeStore(config.codes_file, CodeCipher(key))
        return cls(
            config,
            codes,
            connector=connector,
            generated_key=key.hex() if generated else None,
        )

    async def session(self, timeout: float | None = None):
        """Return the ready driver session."""
        return await self.connection.acquire(timeout)

    async def node(self, node_id: int):
        """Look up a node on the ready session. Raises NotFoundError."""
        session = await self.connection.acquire()
        return session.get_node(node_id)

    async def shutdown(self) -> None:
        await self.connection.release()

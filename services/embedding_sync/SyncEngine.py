"""Wiring of clients and engine components, shared by the CLI runner and the API."""

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.clients.source.SourceClientManager import SourceClientManager
from shared.errors import NotConfiguredError
from shared.helper.HelperConfig import HelperConfig
from services.embedding_sync.IndexClient import IndexClient
from services.embedding_sync.SimilaritySearch import SimilaritySearch
from services.embedding_sync.SourceCollectors import build_collectors
from services.embedding_sync.SyncCoordinator import SyncCoordinator


class SyncEngine:
    """Owns the remote clients and the coordinator/search built on top of them."""

    def __init__(
        self,
        helper_config: HelperConfig,
        source_client: SourceClientInterface,
        rag_client: RAGClientInterface | None,
        embed_client: EmbedClientInterface | None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self.source_client = source_client
        self.rag_client = rag_client
        self.embed_client = embed_client
        self.index = IndexClient(helper_config, rag_client, embed_client)
        self.coordinator = SyncCoordinator(helper_config, self.index, build_collectors(helper_config, source_client))
        self.search = SimilaritySearch(helper_config, self.index)

    @classmethod
    def from_config(cls, helper_config: HelperConfig) -> "SyncEngine":
        """Build an engine from the environment.

        Raises:
            NotConfiguredError: If a vector index is configured but no embedding provider.
            ValueError: If an engine is unsupported or misconfigured.
        """
        source_client = SourceClientManager(helper_config=helper_config).get_client()
        rag_client = RAGClientManager(helper_config=helper_config).get_client()
        try:
            embed_client = EmbedClientManager(helper_config=helper_config).get_client()
        except NotConfiguredError:
            if rag_client is not None:
                raise
            # without an index nothing is ever embedded
            helper_config.get_logger().warning("No embedding provider configured, running without one.")
            embed_client = None
        return cls(helper_config, source_client, rag_client, embed_client)

    def _clients(self) -> list:
        return [client for client in (self.embed_client, self.rag_client, self.source_client) if client is not None]

    async def start(self) -> None:
        """Boot and health-check every client and make sure the index exists.

        Raises:
            TransientProviderError: If a backend is unreachable.
        """
        for client in self._clients():
            await client.boot()
            await client.do_healthcheck()
            self.logging.debug("%s client %s is up", client.get_client_type(), client.get_engine_name())
        if self.rag_client is not None:
            await self.rag_client.do_ensure_index()

    async def close(self) -> None:
        for client in self._clients():
            await client.close()

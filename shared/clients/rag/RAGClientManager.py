from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface


class RAGClientManager:
    """
    Resolves the vector index client from RAG_ENGINE.

    An unset RAG_ENGINE is a supported deployment: the manager hands out no
    client and every index-dependent operation degrades to empty results/no-ops.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str | None:
        """
        Reads the RAG engine from RAG_ENGINE, normalised to "Upstash" / "Qdrant".

        Returns:
            str | None: The engine name, or None when no index is configured.
        """
        engine = self.helper_config.get_optional_string_val("RAG_ENGINE")
        if not engine:
            return None
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> RAGClientInterface | None:
        """
        Imports shared.clients.rag.{engine}.RAGClient{Engine} and instantiates it.

        Returns:
            RAGClientInterface | None: The client, or None when RAG_ENGINE is unset.

        Raises:
            ValueError: If the engine is unsupported or its required settings are missing.
        """
        engine = self._get_engine_from_env()
        if engine is None:
            self.logging.warning("RAG_ENGINE is not set: vector index unavailable, sync and search will be no-ops.")
            return None

        class_name = f"RAGClient{engine}"
        try:
            module = __import__(
                f"shared.clients.rag.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported RAG engine specified: '{engine}'. Error: {e}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated RAG client for engine: %s", engine)
        return client

    def get_client(self) -> RAGClientInterface | None:
        """
        Returns the vector index client, or None if no index is configured.
        """
        return self.client

from shared.errors import NotConfiguredError
from shared.helper.HelperConfig import HelperConfig
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface


class EmbedClientManager:
    """
    Resolves the embedding provider from EMBED_ENGINE.

    Embeddings are required for every write, so a missing or broken
    configuration is an error here, not a degraded mode.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client: EmbedClientInterface | None = None

    def _get_engine_from_env(self) -> str:
        """
        Reads the embedding engine from EMBED_ENGINE, normalised to "Ollama" / "Openai".

        Raises:
            NotConfiguredError: If EMBED_ENGINE is not set.
        """
        engine = self.helper_config.get_optional_string_val("EMBED_ENGINE")
        if not engine:
            raise NotConfiguredError("No embedding engine configured. Set EMBED_ENGINE (e.g. 'openai' or 'ollama').")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> EmbedClientInterface:
        """
        Imports shared.clients.embed.{engine}.EmbedClient{Engine} and instantiates it.

        Raises:
            NotConfiguredError: If the engine's required settings are missing.
            ValueError: If the engine is not supported.
        """
        engine = self._get_engine_from_env()
        class_name = f"EmbedClient{engine}"
        try:
            module = __import__(
                f"shared.clients.embed.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported Embed engine specified: '{engine}'. Error: {e}")

        try:
            client = client_class(helper_config=self.helper_config)
        except ValueError as e:
            raise NotConfiguredError(f"Embed engine '{engine}' is not configured: {e}") from e
        self.logging.debug("Instantiated Embed client for engine: %s", engine)
        return client

    def get_client(self) -> EmbedClientInterface:
        """
        Returns the embedding client, instantiating it on first use.

        Raises:
            NotConfiguredError: If no usable embedding engine is configured.
        """
        if self.client is None:
            self.client = self._initialize_client()
        return self.client

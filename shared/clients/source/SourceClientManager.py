from shared.helper.HelperConfig import HelperConfig
from shared.clients.source.SourceClientInterface import SourceClientInterface


class SourceClientManager:
    """
    Resolves the source store client from SOURCE_ENGINE (default "rest").
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _initialize_client(self) -> SourceClientInterface:
        """
        Imports shared.clients.source.{engine}.SourceClient{Engine} and instantiates it.

        Raises:
            ValueError: If the engine is unsupported or its required settings are missing.
        """
        engine = self.helper_config.get_string_val("SOURCE_ENGINE", default="rest").strip().lower().capitalize()
        class_name = f"SourceClient{engine}"
        try:
            module = __import__(
                f"shared.clients.source.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported Source engine specified: '{engine}'. Error: {e}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated Source client for engine: %s", engine)
        return client

    def get_client(self) -> SourceClientInterface:
        """
        Returns the source store client.
        """
        return self.client

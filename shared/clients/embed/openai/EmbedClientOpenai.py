from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOpenai(EmbedClientInterface):
    """OpenAI-compatible /v1/embeddings backend (OpenAI, Azure proxies, vLLM, LiteLLM)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://api.openai.com", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")
        self._dimensions = self.get_config_val("DIMENSIONS", default=0, val_type="number")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Openai"

    def _get_default_model(self) -> str:
        return "text-embedding-3-small"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://api.openai.com"),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
            EnvConfig(env_key="DIMENSIONS", val_type="number", default=0),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/models"

    def get_endpoint_embedding(self) -> str:
        return "/v1/embeddings"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        payload: dict = {"model": self.embed_model, "input": texts}
        # only the text-embedding-3 family accepts a reduced dimension
        if self._dimensions:
            payload["dimensions"] = int(self._dimensions)
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from an OpenAI-style response, re-sorted by input index.

        Raises:
            ValueError: If the response does not contain valid embeddings.
        """
        data = response_data.get("data")
        if not data:
            raise ValueError(
                "OpenAI response does not contain embeddings. "
                f"Response keys: {list(response_data.keys())}"
            )
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        embeddings = [item.get("embedding") or [] for item in ordered]
        if not all(embeddings):
            raise ValueError("OpenAI response contains an empty embedding.")
        return embeddings

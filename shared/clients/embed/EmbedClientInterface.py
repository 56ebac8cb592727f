from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.errors import TransientProviderError
from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    """Turns text into vectors via a remote embedding service.

    embed_many() is the contract the sync engine relies on: output length and
    order always equal the input, blank texts are never sent to the backend
    and come back as empty vectors in their original position.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and batching config
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default=self._get_default_model())
        self.embed_batch_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_BATCH_SIZE", default=96))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    @abstractmethod
    def _get_default_model(self) -> str:
        """
        Returns the model used when EMBED_MODEL is not set.
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed. Never contains blank strings.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]}, already ordered
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]}, needs sorting

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ValueError: If the response format is invalid or embeddings are empty.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Send one embedding request and return the extracted vectors.

        Args:
            texts (list[str] | str): One or more non-blank texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            TransientProviderError: If the HTTP request fails or the backend
                returns a different number of vectors than texts were sent.
            ValueError: If the response does not contain valid embeddings.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(texts)
        response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        if response.status_code != 200:
            self.logging.error(
                "Embedding request failed: status %d, body: %s",
                response.status_code,
                response.text[:200],
            )
            raise TransientProviderError(
                "Embedding request failed with status %d." % response.status_code,
                status_code=response.status_code,
            )
        vectors = self.extract_embeddings_from_response(response.json())
        if len(vectors) != len(texts):
            raise TransientProviderError(
                f"Embedding backend returned {len(vectors)} vectors for {len(texts)} texts."
            )
        return vectors

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            ValueError: If the text is blank.
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text.")
        vectors = await self.do_embed([text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts while preserving positions.

        Blank texts are left out of the backend calls and yield an empty vector
        at their index, so callers can zip inputs and outputs positionally.
        Inputs larger than the provider batch size are split into several calls.

        Args:
            texts (list[str]): The texts to embed, possibly containing blanks.

        Returns:
            list[list[float]]: One vector per input text, in input order.
        """
        vectors: list[list[float]] = [[] for _ in texts]
        pending = [(index, text) for index, text in enumerate(texts) if text and text.strip()]
        if not pending:
            return vectors

        for start in range(0, len(pending), self.embed_batch_size):
            batch = pending[start:start + self.embed_batch_size]
            batch_vectors = await self.do_embed([text for _, text in batch])
            for (index, _), vector in zip(batch, batch_vectors):
                vectors[index] = vector

        self.logging.debug("Embedded %d of %d texts with %s", len(pending), len(texts), self.get_engine_name())
        return vectors

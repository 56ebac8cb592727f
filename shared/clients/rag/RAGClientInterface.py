from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.VectorPoint import VectorMatch, VectorPoint
from shared.helper.HelperConfig import HelperConfig


class RAGClientInterface(ClientInterface):
    """Capability surface of a remote vector index: upsert, query, fetch, delete.

    The index is only assumed to offer approximate nearest-neighbour queries with
    an optional equality filter; there is no list-by-metadata or delete-by-filter.
    Filters are passed as a flat {metadata_key: value} dict and translated by
    each engine into its own syntax.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._max_top_k = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_MAX_TOP_K", default=1000))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    def get_max_top_k(self) -> int:
        """
        Returns the maximum number of results a single query may return.
        """
        return self._max_top_k

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_upsert(self) -> str:
        """
        Returns the endpoint path for upsert requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_query(self) -> str:
        """
        Returns the endpoint path for similarity queries.
        """
        pass

    @abstractmethod
    def _get_endpoint_fetch(self) -> str:
        """
        Returns the endpoint path for fetch-by-id requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_delete(self) -> str:
        """
        Returns the endpoint path for delete-by-id requests.
        """
        pass

    def _get_method_upsert(self) -> str:
        return "POST"

    def _get_method_delete(self) -> str:
        return "POST"

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_upsert_payload(self, points: list[VectorPoint]) -> dict | list:
        """
        Builds the backend-specific request body for an upsert.

        Args:
            points (list[VectorPoint]): The vectors to write.

        Returns:
            dict | list: JSON-serialisable request body.
        """
        pass

    @abstractmethod
    def get_query_payload(self, vector: list[float], top_k: int, include_metadata: bool, include_vectors: bool, filters: dict[str, str] | None) -> dict:
        """
        Builds the backend-specific request body for a similarity query.

        Args:
            vector (list[float]): The query vector.
            top_k (int): Maximum number of results, already clamped to get_max_top_k().
            include_metadata (bool): Whether to return stored metadata.
            include_vectors (bool): Whether to return stored vectors.
            filters (dict[str, str] | None): Metadata equality conditions, AND-ed together.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    @abstractmethod
    def get_fetch_payload(self, ids: list[str], include_vectors: bool) -> dict:
        """
        Builds the backend-specific request body for a fetch by ids.
        """
        pass

    @abstractmethod
    def get_delete_payload(self, ids: list[str]) -> dict | list:
        """
        Builds the backend-specific request body for a delete by ids.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_query_matches(self, raw_response: dict) -> list[VectorMatch]:
        """
        Extracts the ranked matches from a raw query response, best match first.
        """
        pass

    @abstractmethod
    def extract_fetch_records(self, raw_response: dict, ids: list[str]) -> list[VectorMatch | None]:
        """
        Extracts fetched vectors from a raw fetch response.

        Args:
            raw_response (dict): The raw JSON response.
            ids (list[str]): The requested ids, in request order.

        Returns:
            list[VectorMatch | None]: One entry per requested id, None where the id is not stored.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_ensure_index(self) -> None:
        """Create the index/collection if the engine needs one created up front. No-op by default."""
        return None

    async def do_upsert(self, points: list[VectorPoint]) -> None:
        """Insert new vectors or overwrite the ones with the same ID.

        Raises:
            TransientProviderError: If the backend rejects the write.
        """
        if not points:
            return
        await self.do_request(
            method=self._get_method_upsert(),
            json=self.get_upsert_payload(points),
            endpoint=self._get_endpoint_upsert(),
            raise_on_error=True,
        )

    async def do_query(self, vector: list[float], top_k: int, include_metadata: bool = True, include_vectors: bool = False, filters: dict[str, str] | None = None) -> list[VectorMatch]:
        """Run an approximate nearest-neighbour query.

        top_k is clamped to the engine's maximum result size.

        Raises:
            TransientProviderError: If the backend rejects the query.
        """
        top_k = max(1, min(top_k, self.get_max_top_k()))
        resp = await self.do_request(
            method="POST",
            json=self.get_query_payload(vector, top_k, include_metadata, include_vectors, filters),
            endpoint=self._get_endpoint_query(),
            raise_on_error=True,
        )
        return self.extract_query_matches(resp.json())

    async def do_fetch(self, ids: list[str], include_vectors: bool = False) -> list[VectorMatch | None]:
        """Fetch vectors by ID, metadata always included.

        Returns:
            list[VectorMatch | None]: One entry per requested id, None where the id is not stored.

        Raises:
            TransientProviderError: If the backend rejects the request.
        """
        if not ids:
            return []
        resp = await self.do_request(
            method="POST",
            json=self.get_fetch_payload(ids, include_vectors),
            endpoint=self._get_endpoint_fetch(),
            raise_on_error=True,
        )
        return self.extract_fetch_records(resp.json(), ids)

    async def do_delete(self, ids: list[str]) -> None:
        """Delete vectors by ID. Deleting an ID that does not exist is not an error.

        Raises:
            TransientProviderError: If the backend rejects the request.
        """
        if not ids:
            return
        await self.do_request(
            method=self._get_method_delete(),
            json=self.get_delete_payload(ids),
            endpoint=self._get_endpoint_delete(),
            raise_on_error=True,
        )

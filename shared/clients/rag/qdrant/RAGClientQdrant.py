import uuid

from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import VectorMatch, VectorPoint
from shared.models.config import EnvConfig

# payload key holding the engine's string id; qdrant point ids must be UUIDs or integers
EMBEDDING_ID_KEY = "embedding_id"


def make_point_id(embedding_id: str) -> str:
    """Build a deterministic UUID5 point ID for an embedding ID.

    The same embedding ID always maps to the same point, so re-upserting
    overwrites rather than duplicates.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_OID, embedding_id))


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default=None, val_type="string")
        self._vector_size = int(self.get_config_val("VECTOR_SIZE", default=1536, val_type="number"))
        self._distance = self.get_config_val("DISTANCE", default="Cosine", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_upsert(self) -> str:
        return f"/collections/{self._collection_name}/points"

    def _get_endpoint_query(self) -> str:
        return f"/collections/{self._collection_name}/points/search"

    def _get_endpoint_fetch(self) -> str:
        return f"/collections/{self._collection_name}/points"

    def _get_endpoint_delete(self) -> str:
        return f"/collections/{self._collection_name}/points/delete"

    def _get_endpoint_check_collection_existence(self) -> str:
        return f"/collections/{self._collection_name}/exists"

    def _get_endpoint_create_collection(self) -> str:
        return f"/collections/{self._collection_name}"

    def _get_method_upsert(self) -> str:
        return "PUT"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def _get_filter(self, filters: dict[str, str] | None) -> dict | None:
        if not filters:
            return None
        return {"must": [{"key": key, "match": {"value": value}} for key, value in filters.items()]}

    def get_upsert_payload(self, points: list[VectorPoint]) -> dict:
        return {
            "points": [
                {
                    "id": make_point_id(p.id),
                    "vector": p.vector,
                    "payload": {**p.metadata, EMBEDDING_ID_KEY: p.id},
                }
                for p in points
            ]
        }

    def get_query_payload(self, vector: list[float], top_k: int, include_metadata: bool, include_vectors: bool, filters: dict[str, str] | None) -> dict:
        payload = {
            "vector": vector,
            "limit": top_k,
            "with_payload": include_metadata,
            "with_vector": include_vectors,
        }
        query_filter = self._get_filter(filters)
        if query_filter:
            payload["filter"] = query_filter
        return payload

    def get_fetch_payload(self, ids: list[str], include_vectors: bool) -> dict:
        return {"ids": [make_point_id(i) for i in ids], "with_payload": True, "with_vector": include_vectors}

    def get_delete_payload(self, ids: list[str]) -> dict:
        return {"points": [make_point_id(i) for i in ids]}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _to_match(self, point: dict) -> VectorMatch:
        payload = dict(point.get("payload") or {})
        embedding_id = payload.pop(EMBEDDING_ID_KEY, None) or str(point.get("id"))
        vector = point.get("vector")
        # named vectors come back as a dict; the engine only writes the default one
        if isinstance(vector, dict):
            vector = next(iter(vector.values()), None)
        return VectorMatch(id=embedding_id, score=point.get("score"), metadata=payload or None, vector=vector)

    def extract_query_matches(self, raw_response: dict) -> list[VectorMatch]:
        return [self._to_match(point) for point in raw_response.get("result") or []]

    def extract_fetch_records(self, raw_response: dict, ids: list[str]) -> list[VectorMatch | None]:
        # qdrant omits unknown ids, so map the answer back onto the request order
        by_id = {}
        for point in raw_response.get("result") or []:
            match = self._to_match(point)
            by_id[match.id] = match
        return [by_id.get(i) for i in ids]

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_ensure_index(self) -> None:
        """Create the collection if it does not exist yet."""
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_check_collection_existence(), raise_on_error=True)
        if resp.json().get("result", {}).get("exists"):
            self.logging.info("Qdrant collection %r already exists.", self._collection_name)
            return
        await self.do_request(
            method="PUT",
            json={"vectors": {"size": self._vector_size, "distance": self._distance}},
            endpoint=self._get_endpoint_create_collection(),
            raise_on_error=True,
        )
        self.logging.info("Created Qdrant collection %r (size=%d, distance=%s).", self._collection_name, self._vector_size, self._distance)

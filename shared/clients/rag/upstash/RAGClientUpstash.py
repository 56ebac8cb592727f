from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import VectorMatch, VectorPoint
from shared.models.config import EnvConfig


def build_filter_expression(filters: dict[str, str] | None) -> str:
    """Translate an equality filter dict into Upstash's SQL-like filter syntax.

    {"organizationId": "org_1", "sourceType": "policy"}
        -> 'organizationId = "org_1" AND sourceType = "policy"'
    """
    if not filters:
        return ""
    clauses = []
    for key, value in filters.items():
        escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
        clauses.append(f'{key} = "{escaped}"')
    return " AND ".join(clauses)


class RAGClientUpstash(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._token = self.get_config_val("TOKEN", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Upstash"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="TOKEN", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._token}"}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/info"

    def _get_endpoint_upsert(self) -> str:
        return "/upsert"

    def _get_endpoint_query(self) -> str:
        return "/query"

    def _get_endpoint_fetch(self) -> str:
        return "/fetch"

    def _get_endpoint_delete(self) -> str:
        return "/delete"

    def _get_method_delete(self) -> str:
        return "DELETE"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_upsert_payload(self, points: list[VectorPoint]) -> list:
        return [{"id": p.id, "vector": p.vector, "metadata": p.metadata} for p in points]

    def get_query_payload(self, vector: list[float], top_k: int, include_metadata: bool, include_vectors: bool, filters: dict[str, str] | None) -> dict:
        payload = {
            "vector": vector,
            "topK": top_k,
            "includeMetadata": include_metadata,
            "includeVectors": include_vectors,
        }
        expression = build_filter_expression(filters)
        if expression:
            payload["filter"] = expression
        return payload

    def get_fetch_payload(self, ids: list[str], include_vectors: bool) -> dict:
        return {"ids": ids, "includeMetadata": True, "includeVectors": include_vectors}

    def get_delete_payload(self, ids: list[str]) -> list:
        return list(ids)

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _to_match(self, item: dict) -> VectorMatch:
        return VectorMatch(
            id=str(item.get("id")),
            score=item.get("score"),
            metadata=item.get("metadata"),
            vector=item.get("vector"),
        )

    def extract_query_matches(self, raw_response: dict) -> list[VectorMatch]:
        return [self._to_match(item) for item in raw_response.get("result") or [] if item]

    def extract_fetch_records(self, raw_response: dict, ids: list[str]) -> list[VectorMatch | None]:
        # upstash answers positionally, with null for unknown ids
        result = raw_response.get("result") or []
        records: list[VectorMatch | None] = []
        for index in range(len(ids)):
            item = result[index] if index < len(result) else None
            records.append(self._to_match(item) if item else None)
        return records

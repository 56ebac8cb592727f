from urllib.parse import quote

from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.clients.source.models.RecordsPage import RecordsPage
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.embedding import SourceType

# collection segment per source kind on the internal API
_COLLECTIONS: dict[SourceType, str] = {
    SourceType.POLICY: "policies",
    SourceType.CONTEXT: "context",
    SourceType.MANUAL_ANSWER: "manual-answers",
    SourceType.KNOWLEDGE_BASE_DOCUMENT: "knowledge-base-documents",
}


class SourceClientRest(SourceClientInterface):
    """Talks to the compliance application's internal JSON API.

    Listing responses look like {"data": [...], "nextPage": 2 | null};
    single records like {"data": {...}}.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Rest"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"X-Internal-Api-Key": self._api_key}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/internal/health"

    def _get_endpoint_records(self, source_type: SourceType, organization_id: str, page: int, page_size: int) -> str:
        return f"/internal/organizations/{quote(organization_id, safe='')}/{_COLLECTIONS[source_type]}?page={page}&pageSize={page_size}"

    def _get_endpoint_record(self, source_type: SourceType, record_id: str, organization_id: str) -> str:
        return f"/internal/organizations/{quote(organization_id, safe='')}/{_COLLECTIONS[source_type]}/{quote(record_id, safe='')}"

    def _get_endpoint_file(self, locator: str) -> str:
        return f"/internal/files/{quote(locator, safe='/')}"

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _parse_records_page(self, response: dict) -> RecordsPage:
        return RecordsPage(records=response.get("data") or [], next_page=response.get("nextPage"))

    def _parse_record(self, response: dict) -> dict:
        return response.get("data") or {}

from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.source.models.RecordsPage import DownloadedFile, RecordsPage
from shared.errors import SourceNotFoundError, TransientProviderError
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import SourceType


class SourceClientInterface(ClientInterface):
    """Read access to the authoritative source store (policies, context entries,
    manual answers, knowledge-base documents) of the compliance application.

    The engine never writes source records; the only write is the best-effort
    processing status of knowledge-base documents.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.page_size = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_PAGE_SIZE", default=100))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "source"
        """
        return "source"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_records(self, source_type: SourceType, organization_id: str, page: int, page_size: int) -> str:
        """
        Returns the endpoint path listing one page of records of a kind for an organization.
        """
        pass

    @abstractmethod
    def _get_endpoint_record(self, source_type: SourceType, record_id: str, organization_id: str) -> str:
        """
        Returns the endpoint path of a single record.
        """
        pass

    @abstractmethod
    def _get_endpoint_file(self, locator: str) -> str:
        """
        Returns the endpoint path serving the raw bytes of an uploaded file.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def _parse_records_page(self, response: dict) -> RecordsPage:
        """
        Parses a raw listing response into a RecordsPage.
        """
        pass

    @abstractmethod
    def _parse_record(self, response: dict) -> dict:
        """
        Parses a raw single-record response into the raw record dict.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_list_records(self, source_type: SourceType, organization_id: str) -> list[dict]:
        """Fetch all records of a kind for an organization, following pagination.

        Raises:
            TransientProviderError: If any page cannot be fetched. A partial listing
                is never returned, since it would make existing records look deleted.
        """
        records: list[dict] = []
        page: int | None = 1
        while page is not None:
            resp = await self.do_request(
                method="GET",
                endpoint=self._get_endpoint_records(source_type, organization_id, page, self.page_size),
                raise_on_error=True,
            )
            parsed = self._parse_records_page(resp.json())
            records.extend(parsed.records)
            if parsed.next_page is not None and parsed.next_page <= page:
                # a cursor that does not advance would loop forever
                self.logging.warning("Source listing for %s returned non-advancing page %s, stopping.", source_type.value, parsed.next_page)
                break
            page = parsed.next_page
        self.logging.debug("Fetched %d %s records for organization %s", len(records), source_type.value, organization_id)
        return records

    async def do_get_record(self, source_type: SourceType, record_id: str, organization_id: str) -> dict:
        """Fetch one record.

        Raises:
            SourceNotFoundError: If the source store answers 404.
            TransientProviderError: On any other failure.
        """
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_record(source_type, record_id, organization_id))
        if resp.status_code == 404:
            raise SourceNotFoundError(source_type.value, record_id, organization_id)
        if resp.status_code >= 300:
            self.logging.error("Fetching %s %s failed with status %d: %s", source_type.value, record_id, resp.status_code, resp.text[:500])
            raise TransientProviderError(
                f"Fetching {source_type.value} '{record_id}' failed with status {resp.status_code}",
                status_code=resp.status_code,
            )
        return self._parse_record(resp.json())

    async def do_download_document(self, locator: str) -> DownloadedFile:
        """Download the raw bytes of an uploaded file.

        Raises:
            TransientProviderError: If the file cannot be downloaded.
        """
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_file(locator), raise_on_error=True)
        return DownloadedFile(data=resp.content, content_type=resp.headers.get("content-type"))

    async def do_update_document_status(self, record_id: str, organization_id: str, status: str) -> None:
        """Report a knowledge-base document's processing status back to the source store.

        Raises:
            TransientProviderError: If the update is rejected.
        """
        await self.do_request(
            method="PATCH",
            json={"processingStatus": status},
            endpoint=self._get_endpoint_record(SourceType.KNOWLEDGE_BASE_DOCUMENT, record_id, organization_id),
            raise_on_error=True,
        )

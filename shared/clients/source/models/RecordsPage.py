from pydantic import BaseModel


class RecordsPage(BaseModel):
    """One page of raw records returned by a source store listing.

    Attributes:
        records:   Raw record dicts, still in the source store's own field naming.
        next_page: Page number to request next, or None when this was the last page.
    """

    records: list[dict] = []
    next_page: int | None = None


class DownloadedFile(BaseModel):
    """Raw bytes of an uploaded knowledge-base file."""

    data: bytes
    content_type: str | None = None

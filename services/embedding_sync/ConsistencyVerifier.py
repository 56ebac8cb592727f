"""Read-after-write verification against an eventually consistent index.

A successful upsert only means the vector is durably stored. It is
searchable once a query with its own vector returns it again; that
self-retrieval is what the verifier waits for.
"""

import asyncio
from typing import Awaitable, Callable

from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_attempt, wait_exponential

from services.embedding_sync.IndexClient import IndexClient
from shared.errors import ConsistencyTimeoutError
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import VerificationResult

SELF_QUERY_TOP_K = 10   # the embedding must rank among this many neighbours of itself


class ConsistencyVerifier:
    """Waits, with exponential backoff, until an embedding is stored and searchable."""

    def __init__(
        self,
        helper_config: HelperConfig,
        index: IndexClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._index = index
        self._sleep = sleep
        self.max_attempts = max(1, int(helper_config.get_number_val("SYNC_VERIFY_MAX_ATTEMPTS", default=5)))
        self.initial_delay_ms = max(0, int(helper_config.get_number_val("SYNC_VERIFY_INITIAL_DELAY_MS", default=100)))

    async def verify(self, embedding_id: str, organization_id: str, raise_on_timeout: bool = False) -> VerificationResult:
        """Confirm an embedding can be found by similarity search.

        Each attempt fetches the embedding with its vector and, once it is
        stored, queries the index with that vector filtered to the
        organization. Provider errors during an attempt count as a failed
        attempt. Attempts are retried by tenacity with an exponential wait
        that doubles after every failed attempt.

        Args:
            embedding_id (str): The embedding to check.
            organization_id (str): Owner, used to scope the self-query.
            raise_on_timeout (bool): Raise ConsistencyTimeoutError instead of returning an unsuccessful result.

        Returns:
            VerificationResult: success flag, attempts made and total time waited.

        Raises:
            ConsistencyTimeoutError: If raise_on_timeout is set and the budget is exhausted.
        """
        if not self._index.available:
            return VerificationResult(embedding_id=embedding_id, success=False, attempts=0, total_wait_ms=0)

        attempts = 0
        waited = 0.0

        async def attempt_once() -> bool:
            nonlocal attempts
            attempts += 1
            return await self._attempt(embedding_id, organization_id, attempts)

        async def sleep(seconds: float) -> None:
            nonlocal waited
            waited += seconds
            await self._sleep(seconds)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.initial_delay_ms / 1000),
            retry=retry_if_result(lambda searchable: not searchable),
            sleep=sleep,
        )
        try:
            await retrying(attempt_once)
        except RetryError:
            waited_ms = int(round(waited * 1000))
            self.logging.warning(
                "Embedding %s not searchable after %d attempts (%d ms); it is stored but may not show up in search yet",
                embedding_id, attempts, waited_ms,
            )
            if raise_on_timeout:
                raise ConsistencyTimeoutError(embedding_id, attempts, waited_ms)
            return VerificationResult(embedding_id=embedding_id, success=False, attempts=attempts, total_wait_ms=waited_ms)

        waited_ms = int(round(waited * 1000))
        self.logging.debug("Embedding %s searchable after %d attempts (%d ms)", embedding_id, attempts, waited_ms)
        return VerificationResult(embedding_id=embedding_id, success=True, attempts=attempts, total_wait_ms=waited_ms)

    async def _attempt(self, embedding_id: str, organization_id: str, attempt: int) -> bool:
        try:
            fetched = await self._index.fetch([embedding_id], include_vectors=True)
            stored = fetched[0] if fetched else None
            if stored is None or not stored.vector:
                self.logging.debug("Verify attempt %d: %s not stored yet", attempt, embedding_id)
                return False
            matches = await self._index.query(
                stored.vector, SELF_QUERY_TOP_K, filters={"organizationId": organization_id},
            )
        except Exception as exc:
            self.logging.debug("Verify attempt %d for %s failed: %s", attempt, embedding_id, exc)
            return False
        return any(match.id == embedding_id for match in matches)

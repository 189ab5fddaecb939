"""
Sheet Fetcher - downloads a tenant's sheet as delimited text.

A stored sheet reference may point at a sub-sheet (gid) that no longer
exists after the sheet was reorganized, so candidates are tried in order:
the gid embedded in the reference, then the default gid.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple

import httpx

from leadsync.config import settings
from leadsync.exceptions import FetchError

logger = logging.getLogger(__name__)

SHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)")
GID_PATTERN = re.compile(r"gid=([0-9]+)")

MARKUP_PREFIXES = ("<!doctype", "<html", "<?xml")

# Statuses that mean "this candidate will never work", no point retrying
NON_RETRYABLE_STATUSES = {403: "Sheet is not publicly accessible", 404: "Sheet not found"}


@dataclass
class FetchResult:
    text: str
    gid_used: str
    retry_count: int = 0
    attempts: List[str] = field(default_factory=list)


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


class SheetFetcher:
    """Resolve a sheet reference to export URLs and fetch the first usable one."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        default_gid: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        initial_retry_delay: Optional[float] = None,
        max_retry_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.client = client
        self.base_url = (base_url or settings.SHEET_EXPORT_BASE_URL).rstrip("/")
        self.default_gid = default_gid if default_gid is not None else settings.SHEET_DEFAULT_GID
        self.timeout = timeout if timeout is not None else settings.SHEET_FETCH_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.SHEET_FETCH_MAX_RETRIES
        self.initial_retry_delay = (
            initial_retry_delay if initial_retry_delay is not None
            else settings.SHEET_FETCH_INITIAL_RETRY_DELAY
        )
        self.max_retry_delay = (
            max_retry_delay if max_retry_delay is not None
            else settings.SHEET_FETCH_MAX_RETRY_DELAY
        )
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Reference parsing
    # ------------------------------------------------------------------

    @staticmethod
    def extract_sheet_id(sheet_url: Optional[str]) -> Optional[str]:
        match = SHEET_ID_PATTERN.search(sheet_url or "")
        return match.group(1) if match else None

    @staticmethod
    def extract_gid(sheet_url: Optional[str]) -> Optional[str]:
        match = GID_PATTERN.search(sheet_url or "")
        return match.group(1) if match else None

    def candidate_gids(self, sheet_url: str) -> List[str]:
        candidates = []
        for gid in (self.extract_gid(sheet_url), self.default_gid):
            if gid is not None and gid not in candidates:
                candidates.append(gid)
        return candidates

    def export_url(self, sheet_id: str, gid: str) -> str:
        return f"{self.base_url}/{sheet_id}/export?format=csv&gid={gid}"

    @staticmethod
    def looks_like_markup(body: str) -> bool:
        return body.strip().lower().startswith(MARKUP_PREFIXES)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _retry_delay(self, attempt: int) -> float:
        return min(self.initial_retry_delay * (2 ** attempt), self.max_retry_delay)

    async def _get_with_retry(self, client: httpx.AsyncClient, url: str) -> Tuple[httpx.Response, int]:
        """GET ``url``; transport errors and unexpected statuses are retried with backoff."""
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.get(url)
                if response.is_success or response.status_code in NON_RETRYABLE_STATUSES:
                    return response, attempt
                raise _RetryableStatus(response)
            except (httpx.TransportError, _RetryableStatus) as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = self._retry_delay(attempt)
                    logger.warning(
                        f"Retry attempt {attempt + 1}/{self.max_retries} for {url} "
                        f"after {delay:.1f}s ({e})"
                    )
                    await self._sleep(delay)

        if isinstance(last_error, _RetryableStatus):
            return last_error.response, self.max_retries
        raise last_error

    async def fetch(self, tenant) -> FetchResult:
        """
        Fetch the tenant's sheet as text.

        Args:
            tenant: object with ``name`` and ``sheet_url``

        Raises:
            FetchError: when no candidate returns tabular content
        """
        sheet_url = (getattr(tenant, "sheet_url", None) or "").strip()
        sheet_id = self.extract_sheet_id(sheet_url)
        if not sheet_id:
            raise FetchError("Invalid sheet URL format", source=sheet_url)

        if self.client is not None:
            return await self._fetch_candidates(self.client, tenant, sheet_url, sheet_id)

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"Accept": "text/csv, text/plain, */*", "User-Agent": "LeadSync/1.0"}
        ) as client:
            return await self._fetch_candidates(client, tenant, sheet_url, sheet_id)

    async def _fetch_candidates(
        self,
        client: httpx.AsyncClient,
        tenant,
        sheet_url: str,
        sheet_id: str
    ) -> FetchResult:
        attempts: List[str] = []
        retry_count = 0
        last_reason = "no candidates"

        for gid in self.candidate_gids(sheet_url):
            url = self.export_url(sheet_id, gid)
            logger.info(f"Fetching sheet {sheet_id} gid={gid} for '{getattr(tenant, 'name', '?')}'")

            try:
                response, retries = await self._get_with_retry(client, url)
            except httpx.TransportError as e:
                retry_count += self.max_retries
                last_reason = f"gid {gid}: {e.__class__.__name__}: {e}"
                attempts.append(last_reason)
                logger.warning(f"Candidate rejected - {last_reason}")
                continue
            retry_count += retries

            if not response.is_success:
                reason = NON_RETRYABLE_STATUSES.get(
                    response.status_code,
                    f"Failed to fetch: HTTP {response.status_code}"
                )
                last_reason = f"gid {gid}: {reason}"
                attempts.append(last_reason)
                logger.warning(f"Candidate rejected - {last_reason}")
                continue

            body = response.text
            if self.looks_like_markup(body):
                last_reason = f"gid {gid}: Received HTML instead of CSV"
                attempts.append(last_reason)
                logger.warning(f"Candidate rejected - {last_reason}")
                continue

            logger.info(f"Downloaded {len(body)} bytes from sheet {sheet_id} gid={gid}")
            return FetchResult(text=body, gid_used=gid, retry_count=retry_count, attempts=attempts)

        raise FetchError(
            f"Failed to fetch sheet {sheet_id} ({last_reason})",
            source=sheet_url,
            attempts=attempts
        )


async def fetch(tenant, fetcher: Optional[SheetFetcher] = None) -> str:
    """Return the raw tabular text for ``tenant``."""
    result = await (fetcher or SheetFetcher()).fetch(tenant)
    return result.text

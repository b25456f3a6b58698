"""
Ledger gateway client.

This module runs filtered, cursor-paginated queries against the ledger and
drains full result sets. Results keep the order the ledger returns them in
(block height, newest first); nothing here reorders entries.
"""
import logging
import random
import time
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..config import default_timeout
from ..constants import DEFAULT_PAGE_SIZE
from ..models import LogEntry, Page, TagFilter
from ..utils import CancellationToken, check_cancelled
from ._rate_limited_log import rate_limited_log
from .exceptions import (
    GatewayConnectionError,
    GatewayError,
    GatewayResponseError,
    GatewayTimeoutError,
)
from .queries import select_query
from .transport import LedgerTransport, get_transport

logger = logging.getLogger(__name__)


def is_transient(error: GatewayError) -> bool:
    """Connection failures, timeouts and 5xx/429 answers are worth retrying"""
    if isinstance(error, (GatewayConnectionError, GatewayTimeoutError)):
        return True
    if isinstance(error, GatewayResponseError) and error.status_code is not None:
        return error.status_code >= 500 or error.status_code == 429
    return False


class LedgerGateway:
    """
    Client for the ledger's GraphQL query endpoint.

    Args:
        transport: Transport to send queries through; defaults to an HTTP
            transport for ``gateway_url`` or an in-memory ledger without one
        gateway_url: Base URL of the gateway
        timeout: Per-call timeout in seconds (default FAIR_GATEWAY_TIMEOUT or 30)
        max_retries: Retries for transient failures
        backoff_base: Base delay for exponential backoff in seconds
        logger: Optional logger instance
    """

    def __init__(
        self,
        transport: Optional[LedgerTransport] = None,
        gateway_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        logger: Optional[logging.Logger] = None,
    ):
        self.transport = transport if transport is not None else get_transport(gateway_url)
        self.timeout = timeout if timeout is not None else default_timeout()
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.logger = logger or logging.getLogger(__name__)

    def _execute(self, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Run one query, retrying transient failures with backoff and jitter"""
        query = select_query(owners=variables.get("owners"), ids=variables.get("ids"))
        retry_count = 0
        while True:
            if retry_count > 0:
                delay = self.backoff_base * (2 ** (retry_count - 1))
                # Up to 10% jitter
                actual_delay = delay + delay * random.uniform(0, 0.1)
                self.logger.info(
                    f"Retrying ledger query (attempt {retry_count + 1}/{self.max_retries + 1}) in {actual_delay:.2f}s"
                )
                time.sleep(actual_delay)
            try:
                return self.transport.execute(query, variables, timeout=self.timeout)
            except GatewayError as e:
                if is_transient(e) and retry_count < self.max_retries:
                    rate_limited_log(f"Transient ledger failure: {e}", "warning", self.logger)
                    retry_count += 1
                    continue
                self.logger.error(f"Ledger query failed after {retry_count + 1} attempt(s): {e}")
                raise

    @staticmethod
    def _parse_page(data: Dict[str, Any]) -> Page:
        try:
            transactions = data["transactions"]
            has_next = bool(transactions["pageInfo"]["hasNextPage"])
            edges = [LogEntry.from_edge(edge) for edge in transactions["edges"]]
        except (KeyError, TypeError, ValidationError) as e:
            raise GatewayResponseError(f"Malformed ledger response: {e}")
        return Page(edges=edges, has_next_page=has_next)

    def query(
        self,
        tag_filters: Sequence[TagFilter] = (),
        owners: Optional[Sequence[str]] = None,
        first: int = DEFAULT_PAGE_SIZE,
        after: Optional[str] = None,
        ids: Optional[Sequence[str]] = None,
    ) -> Page:
        """
        Fetch one page of entries.

        Args:
            tag_filters: Every filter must match
            owners: Restrict to entries signed by these addresses
            first: Page size
            after: Cursor of the last entry of the previous page
            ids: Restrict to these transaction ids

        Returns:
            Page of entries, newest first

        Raises:
            GatewayError: If the ledger is unreachable or the answer malformed
        """
        variables: Dict[str, Any] = {
            "tags": [f.to_wire() for f in tag_filters],
            "first": first,
        }
        if owners:
            variables["owners"] = list(owners)
        if ids:
            variables["ids"] = list(ids)
        if after:
            variables["after"] = after
        return self._parse_page(self._execute(variables))

    def drain_all(
        self,
        tag_filters: Sequence[TagFilter] = (),
        owners: Optional[Sequence[str]] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        cancel_token: Optional[CancellationToken] = None,
        ids: Optional[Sequence[str]] = None,
    ) -> List[LogEntry]:
        """
        Fetch every matching entry, page by page.

        Pages are requested one after the other, each resuming from the
        previous page's last cursor. An empty page ends the drain even if
        it claims more pages follow, since there is no cursor to resume from.

        Raises:
            GatewayError: On any page failure; partial results are discarded
            OperationCancelledError: If ``cancel_token`` is cancelled
        """
        results: List[LogEntry] = []
        after: Optional[str] = None
        pages = 0
        while True:
            check_cancelled(cancel_token)
            page = self.query(tag_filters, owners=owners, first=page_size, after=after, ids=ids)
            pages += 1
            results.extend(page.edges)
            if not page.has_next_page:
                break
            after = page.last_cursor
            if after is None:
                self.logger.warning("Ledger reported more pages but returned no cursor; stopping drain")
                break
        self.logger.debug(f"Drained {len(results)} entries in {pages} page(s)")
        return results

    def find_first(
        self,
        tag_filters: Sequence[TagFilter] = (),
        owners: Optional[Sequence[str]] = None,
    ) -> Optional[LogEntry]:
        """Newest entry matching the filters, or None"""
        page = self.query(tag_filters, owners=owners, first=1)
        return page.edges[0] if page.edges else None

    def find_latest(
        self,
        tag_filters: Sequence[TagFilter] = (),
        owners: Optional[Sequence[str]] = None,
        first: int = DEFAULT_PAGE_SIZE,
    ) -> List[LogEntry]:
        """Newest ``first`` entries matching the filters, single page"""
        return self.query(tag_filters, owners=owners, first=first).edges

    def get_by_id(self, txid: str) -> Optional[LogEntry]:
        """Entry with the given id, or None"""
        page = self.query(ids=[txid], first=1)
        return page.edges[0] if page.edges else None

    def get_by_ids(self, txids: Sequence[str]) -> List[LogEntry]:
        """All entries with the given ids that exist, newest first"""
        if not txids:
            return []
        return self.drain_all(ids=list(txids), page_size=max(len(txids), 1))

    def close(self) -> None:
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

"""
Query/feed iterator.

A cursor over a paginated result set. Pages are fetched on demand through a
page-fetch callable that is handed the continuation token of the previous
page, verbatim. The iterator is an explicit state machine driven by calls:

    FRESH        no page buffered; the next access fetches
    FETCHING     a page fetch is in flight
    HAS_BUFFERED unread items remain in the buffer
    EXHAUSTED    the buffer is drained and the source declared completion
    FAILED       a non-transient fetch error occurred; the iterator is unusable

Author: docdb Team
Date: 2025-12-12
"""

import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .exceptions import DocumentDBError, is_transient_error
from .models import FeedOptions, FeedPage

logger = logging.getLogger(__name__)

FetchPage = Callable[[Optional[str]], Awaitable[FeedPage]]
Visitor = Callable[[Optional[Dict[str, Any]]], Any]


class IteratorState(str, Enum):
    """Lifecycle states of a QueryIterator."""
    FRESH = "Fresh"
    FETCHING = "Fetching"
    HAS_BUFFERED = "HasBuffered"
    EXHAUSTED = "Exhausted"
    FAILED = "Failed"


class QueryIterator:
    """
    Stateful cursor over a feed.

    Items are delivered in exactly the order the source emits them; a page is
    only fetched once the previous page has been consumed. An instance is not
    safe for concurrent use: create one iterator per consumer.

    Example:
        >>> iterator = client.query_documents(coll, "SELECT * FROM root r")
        >>> while iterator.has_more_results():
        ...     items, headers = await iterator.execute_next()
    """

    def __init__(
        self,
        fetch_page: FetchPage,
        options: Optional[FeedOptions] = None,
        description: str = "feed",
    ):
        """
        Args:
            fetch_page: Coroutine function fetching the page after a
                continuation token (``None`` for the first page)
            options: Feed options; ``continuation`` resumes a previous feed
            description: Label used in log messages
        """
        self._fetch_page = fetch_page
        self._description = description
        self._buffer: List[Dict[str, Any]] = []
        self._position = 0
        self._continuation: Optional[str] = options.continuation if options else None
        self._started = self._continuation is not None
        self._state = IteratorState.FRESH
        self._error: Optional[BaseException] = None
        self._headers: Dict[str, str] = {}
        self._pages_fetched = 0

    # ========== Introspection ==========

    @property
    def state(self) -> IteratorState:
        return self._state

    @property
    def error(self) -> Optional[BaseException]:
        """The error that moved the iterator to FAILED, if any."""
        return self._error

    @property
    def continuation(self) -> Optional[str]:
        """Continuation token of the last fetched page."""
        return self._continuation

    @property
    def last_headers(self) -> Dict[str, str]:
        """Response headers of the last fetched page."""
        return dict(self._headers)

    @property
    def pages_fetched(self) -> int:
        return self._pages_fetched

    def has_more_results(self) -> bool:
        """
        Whether the feed may still yield items.

        True in every state except EXHAUSTED. A FAILED iterator answers
        True so that the next accessor re-raises its error. Never performs
        I/O and never raises.
        """
        return self._state != IteratorState.EXHAUSTED

    # ========== Accessors ==========

    async def execute_next(self) -> Tuple[List[Dict[str, Any]], Dict[str, str]]:
        """
        Return the next page of items.

        Unread items of the current page are returned first without I/O;
        otherwise exactly one page is fetched. Once the feed is exhausted an
        empty list is returned without I/O.

        Returns:
            Tuple of (items, response headers of the page)

        Raises:
            DocumentDBError: The classified fetch error, also re-raised by
                every later call once the iterator has FAILED
        """
        self._raise_if_failed()

        if self._has_buffered():
            items = self._buffer[self._position:]
            self._position = len(self._buffer)
            self._settle()
            return items, dict(self._headers)

        if not self._has_more_pages():
            self._state = IteratorState.EXHAUSTED
            return [], {}

        await self._fetch()
        items = self._buffer[self._position:]
        self._position = len(self._buffer)
        self._settle()
        return items, dict(self._headers)

    async def current(self) -> Optional[Dict[str, Any]]:
        """Item at the cursor without advancing; ``None`` once exhausted."""
        if not await self._ensure_item():
            return None
        return self._buffer[self._position]

    async def next_item(self) -> Optional[Dict[str, Any]]:
        """Item at the cursor, advancing the cursor; ``None`` once exhausted."""
        if not await self._ensure_item():
            return None
        item = self._buffer[self._position]
        self._position += 1
        self._settle()
        return item

    async def for_each(self, visitor: Visitor) -> None:
        """
        Drive the iterator to completion, calling ``visitor`` per item.

        The visitor may be a plain function or a coroutine function. It is
        called with ``None`` after the last item. Returning ``False`` from the
        visitor stops the iteration early without the final ``None`` call.
        """
        while await self._ensure_item():
            item = self._buffer[self._position]
            self._position += 1
            self._settle()
            if await _call(visitor, item) is False:
                return
        await _call(visitor, None)

    async def to_list(self) -> List[Dict[str, Any]]:
        """Drain the feed, following every continuation token, into a list."""
        results: List[Dict[str, Any]] = []
        while await self._ensure_item():
            results.extend(self._buffer[self._position:])
            self._position = len(self._buffer)
            self._settle()
        return results

    def __aiter__(self) -> "QueryIterator":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        item = await self.next_item()
        if item is None:
            raise StopAsyncIteration
        return item

    # ========== State machine ==========

    def _has_buffered(self) -> bool:
        return self._position < len(self._buffer)

    def _has_more_pages(self) -> bool:
        return not self._started or bool(self._continuation)

    def _settle(self) -> None:
        """Recompute the resting state after the cursor moved."""
        if self._has_buffered():
            self._state = IteratorState.HAS_BUFFERED
        elif self._has_more_pages():
            self._state = IteratorState.FRESH
        else:
            self._state = IteratorState.EXHAUSTED

    def _raise_if_failed(self) -> None:
        if self._state == IteratorState.FAILED and self._error is not None:
            raise self._error

    async def _ensure_item(self) -> bool:
        """Fetch pages until an item is buffered or the feed is exhausted."""
        while True:
            self._raise_if_failed()
            if self._has_buffered():
                return True
            if not self._has_more_pages():
                self._state = IteratorState.EXHAUSTED
                return False
            # An empty page with a continuation token is not the end
            await self._fetch()

    async def _fetch(self) -> None:
        previous_state = self._state
        self._state = IteratorState.FETCHING
        logger.debug(
            f"Fetching page {self._pages_fetched + 1} of {self._description} "
            f"(continuation={'yes' if self._continuation else 'no'})"
        )

        try:
            page = await self._fetch_page(self._continuation)
        except DocumentDBError as e:
            if is_transient_error(e):
                self._state = previous_state
                logger.warning(f"Transient failure fetching {self._description}: {e}")
            else:
                self._state = IteratorState.FAILED
                self._error = e
                logger.error(f"Fetching {self._description} failed: {e}")
            raise
        except BaseException:
            self._state = previous_state
            raise

        self._pages_fetched += 1
        self._started = True
        self._buffer = list(page.items)
        self._position = 0
        self._continuation = page.continuation or None
        self._headers = dict(page.headers)
        self._settle()
        logger.debug(
            f"Fetched {len(self._buffer)} items of {self._description}, state={self._state.value}"
        )


async def _call(visitor: Visitor, item: Optional[Dict[str, Any]]) -> Any:
    result = visitor(item)
    if inspect.isawaitable(result):
        result = await result
    return result

"""
Catalog Matcher
===============

Per-line product search with debounce and stale-response protection.

Each line item has its own stream:
- schedule() resets the line's debounce timer on every keystroke; only the
  last timer fires a request.
- Every request is tagged with a monotonic per-line request id. A response
  is applied only if its id is still the latest issued for that line, so a
  slow "sop" answer can never overwrite a faster "soporte" answer.
- In-flight requests are never aborted; cancel() just makes them stale.

Results are handed to on_results(line_id, tag_text, candidates). The matcher
never touches the draft itself.
"""
import asyncio
from typing import Callable, Dict, List, Optional, Set

import config
from .draft_order import ProductCandidate
from utils.logger import get_logger

logger = get_logger()


class CatalogMatcher:
    """Debounced, stale-safe catalog search, one stream per line id"""

    def __init__(self, service, on_results: Callable = None, on_error: Callable = None,
                 debounce_seconds: float = None, min_query_length: int = None, limit: int = None):
        """
        Args:
            service: Catalog collaborator exposing search(query, limit)
            on_results: Called with (line_id, tag_text, candidates) for fresh results
            on_error: Called with (line_id, error) when a current request fails
            debounce_seconds: Quiet period before a scheduled search fires
            min_query_length: Shorter queries clear candidates without a request
            limit: Max candidates requested per search
        """
        self.service = service
        self.on_results = on_results
        self.on_error = on_error
        self.debounce_seconds = (
            config.CATALOG_DEBOUNCE_MS / 1000.0 if debounce_seconds is None else debounce_seconds
        )
        self.min_query_length = min_query_length or config.CATALOG_MIN_QUERY_LENGTH
        self.limit = min(limit or config.CATALOG_SEARCH_LIMIT, config.CATALOG_SEARCH_MAX_LIMIT)

        self._timers: Dict[str, asyncio.Task] = {}
        self._issued: Dict[str, int] = {}
        self._in_flight: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ── request bookkeeping ──────────────────────────────────────

    def _issue(self, line_id: str) -> int:
        self._issued[line_id] = self._issued.get(line_id, 0) + 1
        return self._issued[line_id]

    def is_current(self, line_id: str, request_id: int) -> bool:
        return self._issued.get(line_id) == request_id

    def is_searching(self, line_id: str) -> bool:
        return self._in_flight.get(line_id, 0) > 0

    def has_pending(self, line_id: str) -> bool:
        return line_id in self._timers

    def _clear_timer(self, line_id: str):
        timer = self._timers.pop(line_id, None)
        if timer is not None and not timer.done():
            timer.cancel()

    def cancel(self, line_id: str):
        """Drop the pending timer and make any in-flight response stale"""
        self._clear_timer(line_id)
        if line_id in self._issued:
            self._issue(line_id)

    def forget(self, line_id: str):
        """Line removed: nothing for it may ever be applied again"""
        self._clear_timer(line_id)
        self._issued.pop(line_id, None)

    # ── search ───────────────────────────────────────────────────

    async def search(self, text: str, line_id: str) -> Optional[List[ProductCandidate]]:
        """
        Issue one tagged search right away (no debounce)

        Returns:
            Candidates (empty list for too-short queries), or None when the
            response went stale or the service failed
        """
        query = (text or '').strip()
        if len(query) < self.min_query_length:
            self.cancel(line_id)
            return []

        request_id = self._issue(line_id)
        self._in_flight[line_id] = self._in_flight.get(line_id, 0) + 1
        logger.debug(f"Line {line_id} request #{request_id}: '{query}'", component="CatalogMatcher")

        try:
            candidates = await asyncio.to_thread(self.service.search, query, self.limit)
        except Exception as e:
            if self.is_current(line_id, request_id):
                logger.log_collaborator_error("catalog", e)
                if self.on_error:
                    self.on_error(line_id, e)
            return None
        finally:
            self._in_flight[line_id] -= 1
            if self._in_flight[line_id] <= 0:
                self._in_flight.pop(line_id, None)

        if not self.is_current(line_id, request_id):
            logger.debug(
                f"Line {line_id} discarding stale response #{request_id} for '{query}'",
                component="CatalogMatcher"
            )
            return None
        return list(candidates or [])

    def schedule(self, line_id: str, text: str):
        """
        Debounced search for a keystroke. Must run inside the event loop.

        Too-short text clears the line's candidates immediately.
        """
        self._clear_timer(line_id)

        if len((text or '').strip()) < self.min_query_length:
            self.cancel(line_id)
            self._publish(line_id, text, [])
            return

        self._timers[line_id] = asyncio.get_running_loop().create_task(
            self._fire_after_delay(line_id, text)
        )

    async def _fire_after_delay(self, line_id: str, text: str):
        await asyncio.sleep(self.debounce_seconds)
        if self._timers.get(line_id) is asyncio.current_task():
            del self._timers[line_id]
        task = asyncio.get_running_loop().create_task(self._search_and_publish(line_id, text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _search_and_publish(self, line_id: str, text: str):
        candidates = await self.search(text, line_id)
        if candidates is not None:
            self._publish(line_id, text, candidates)

    def _publish(self, line_id: str, text: str, candidates: List[ProductCandidate]):
        if self.on_results:
            self.on_results(line_id, text, candidates)

    async def drain(self):
        """Wait until no timer is pending and no search is running"""
        while self._timers or self._tasks:
            await asyncio.gather(*list(self._timers.values()), *list(self._tasks),
                                 return_exceptions=True)
            for line_id, timer in list(self._timers.items()):
                if timer.done():
                    del self._timers[line_id]

    def close(self):
        for line_id in list(self._timers):
            self._clear_timer(line_id)

"""Facet option loading for filter widgets.

Each facet moves through ``IDLE -> SCHEDULED -> IN_FLIGHT -> IDLE``. Typed
queries wait out a debounce window before they are sent; empty queries (the
initial load of a widget) go out immediately. Identical queries share one
request, and a response is only applied to the facet's state when its query
is still the latest one accepted for that facet.

All bookkeeping happens on the event loop thread between awaits, so the
in-flight check and the in-flight registration never interleave.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from catalog_search.client.cache import CacheKey, FilterSessionCache
from catalog_search.client.options import FacetOption, normalize_options
from catalog_search.client.transport import (
    DEFAULT_FACETS,
    FacetDefinition,
    Transport,
    TransportError,
    build_search_request,
)
from catalog_search.core.config import settings

_LOG = logging.getLogger("catalog_search.facets")

InFlightKey = CacheKey


class FacetPhase(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"


@dataclass
class _ScheduledSearch:
    key: InFlightKey
    future: asyncio.Future
    timer: asyncio.TimerHandle


@dataclass
class _FacetSlot:
    scheduled: Optional[_ScheduledSearch] = None
    latest_key: Optional[InFlightKey] = None
    options: Tuple[FacetOption, ...] = ()


def normalize_query(query: Optional[str]) -> str:
    return " ".join(str(query or "").split()).lower()


def _forward_result(source: asyncio.Future, target: asyncio.Future) -> None:
    if target.done():
        return
    if source.cancelled():
        target.cancel()
    elif source.exception() is not None:
        target.set_exception(source.exception())
    else:
        target.set_result(source.result())


class FacetCoordinator:
    def __init__(
        self,
        transport: Transport,
        facets: Optional[Mapping[str, FacetDefinition]] = None,
        cache: Optional[FilterSessionCache] = None,
        debounce_seconds: Optional[float] = None,
    ):
        self.transport = transport
        self.facets: Dict[str, FacetDefinition] = dict(facets or DEFAULT_FACETS)
        self.cache = cache or FilterSessionCache(settings.FACET_CACHE_TTL_SECONDS)
        if debounce_seconds is None:
            debounce_seconds = settings.FACET_DEBOUNCE_MS / 1000.0
        self.debounce_seconds = max(0.0, float(debounce_seconds))
        self._slots: Dict[str, _FacetSlot] = {}
        self._in_flight: Dict[InFlightKey, asyncio.Future] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    async def __aenter__(self) -> "FacetCoordinator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _slot(self, facet: str) -> _FacetSlot:
        slot = self._slots.get(facet)
        if slot is None:
            slot = self._slots[facet] = _FacetSlot()
        return slot

    def _definition(self, facet: str) -> FacetDefinition:
        definition = self.facets.get(facet)
        if definition is None:
            raise KeyError(f"Unknown facet: {facet}")
        return definition

    async def search(self, facet: str, query: Optional[str] = "") -> List[FacetOption]:
        if self._closed:
            raise RuntimeError("FacetCoordinator is closed")
        definition = self._definition(facet)
        key = (facet, normalize_query(query))
        slot = self._slot(facet)
        slot.latest_key = key

        entry = self.cache.get(key)
        if self.cache.is_fresh(entry):
            self._supersede_scheduled(slot, key, None, entry.options)
            slot.options = entry.options
            return list(entry.options)

        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            self._supersede_scheduled(slot, key, in_flight, ())
            return list(await asyncio.shield(in_flight))

        loop = asyncio.get_running_loop()
        scheduled = slot.scheduled
        if scheduled is not None:
            # Re-arm: callers of the superseded query receive whatever finally runs.
            scheduled.timer.cancel()
            future = scheduled.future
        else:
            future = loop.create_future()

        delay = self.debounce_seconds if key[1] else 0.0
        if delay <= 0:
            slot.scheduled = None
            self._start(key, definition, future)
        else:
            timer = loop.call_later(delay, self._fire, facet)
            slot.scheduled = _ScheduledSearch(key=key, future=future, timer=timer)
        return list(await asyncio.shield(future))

    def _supersede_scheduled(
        self,
        slot: _FacetSlot,
        key: InFlightKey,
        source: Optional[asyncio.Future],
        options: Tuple[FacetOption, ...],
    ) -> None:
        scheduled = slot.scheduled
        if scheduled is None or scheduled.key == key:
            return
        scheduled.timer.cancel()
        slot.scheduled = None
        if source is None:
            if not scheduled.future.done():
                scheduled.future.set_result(list(options))
        else:
            source.add_done_callback(lambda done: _forward_result(done, scheduled.future))

    def _fire(self, facet: str) -> None:
        slot = self._slots.get(facet)
        if slot is None or slot.scheduled is None:
            return
        scheduled = slot.scheduled
        slot.scheduled = None
        in_flight = self._in_flight.get(scheduled.key)
        if in_flight is not None:
            in_flight.add_done_callback(lambda done: _forward_result(done, scheduled.future))
            return
        self._start(scheduled.key, self._definition(facet), scheduled.future)

    def _start(self, key: InFlightKey, definition: FacetDefinition, future: asyncio.Future) -> None:
        self._in_flight[key] = future
        task = asyncio.get_running_loop().create_task(self._run(key, definition, future))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, key: InFlightKey, definition: FacetDefinition, future: asyncio.Future) -> None:
        request = build_search_request(definition, key[1])
        failed = False
        try:
            payload = await self.transport.search(request)
            options = tuple(normalize_options(payload, request.endpoint))
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except TransportError as exc:
            _LOG.warning("facet load failed facet=%s query=%r error=%s", key[0], key[1], exc)
            options, failed = self._fallback(key), True
        except Exception:
            _LOG.exception("facet load crashed facet=%s query=%r", key[0], key[1])
            options, failed = self._fallback(key), True
        finally:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

        self._apply(key, options, failed)
        if not future.done():
            future.set_result(list(options))

    def _fallback(self, key: InFlightKey) -> Tuple[FacetOption, ...]:
        stale = self.cache.get(key)
        return stale.options if stale is not None else ()

    def _apply(self, key: InFlightKey, options: Tuple[FacetOption, ...], failed: bool) -> None:
        slot = self._slots.get(key[0])
        if slot is None:
            return
        if slot.latest_key != key:
            _LOG.debug("discarding stale facet result facet=%s query=%r", key[0], key[1])
            return
        if not failed:
            self.cache.store(key, options)
        slot.options = options

    def get_cached(self, facet: str) -> List[FacetOption]:
        slot = self._slots.get(facet)
        return list(slot.options) if slot is not None else []

    def invalidate(self, facet: Optional[str] = None) -> None:
        self.cache.invalidate(facet)

    def phase(self, facet: str, query: Optional[str] = None) -> FacetPhase:
        slot = self._slots.get(facet)
        if query is not None:
            key = (facet, normalize_query(query))
            if key in self._in_flight:
                return FacetPhase.IN_FLIGHT
            if slot is not None and slot.scheduled is not None and slot.scheduled.key == key:
                return FacetPhase.SCHEDULED
            return FacetPhase.IDLE
        if slot is not None and slot.scheduled is not None:
            return FacetPhase.SCHEDULED
        if any(key[0] == facet for key in self._in_flight):
            return FacetPhase.IN_FLIGHT
        return FacetPhase.IDLE

    async def load_all(self, facets: Optional[Iterable[str]] = None) -> Dict[str, List[FacetOption]]:
        names = list(facets) if facets is not None else list(self.facets)
        results = await asyncio.gather(*(self.search(name, "") for name in names), return_exceptions=True)
        loaded: Dict[str, List[FacetOption]] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                _LOG.warning("facet bootstrap failed facet=%s error=%r", name, result)
                loaded[name] = []
            else:
                loaded[name] = result
        return loaded

    def close(self) -> None:
        self._closed = True
        for slot in self._slots.values():
            if slot.scheduled is not None:
                slot.scheduled.timer.cancel()
                slot.scheduled.future.cancel()
                slot.scheduled = None
        for task in list(self._tasks):
            task.cancel()
        for future in self._in_flight.values():
            future.cancel()
        self._slots.clear()
        self._in_flight.clear()
        self.cache.clear()

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        self.close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

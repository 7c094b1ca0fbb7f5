import asyncio
import json
import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from catalog_search.client.cache import FilterSessionCache
from catalog_search.client.coordinator import FacetCoordinator, FacetPhase, normalize_query
from catalog_search.client.options import FacetOption
from catalog_search.client.transport import TransportError


def _brands(*names):
    return {"data": [{"id": index + 1, "name": name} for index, name in enumerate(names)]}


class _FakeTransport:
    def __init__(self, responses=None, gated=False):
        self.responses = responses or {}
        self.calls = []
        self.gates = {}
        self.gated = gated

    async def search(self, request):
        query = json.loads(request.params["s_v"])[0] if "s_v" in request.params else ""
        self.calls.append((request.endpoint, query))
        if self.gated:
            gate = asyncio.get_running_loop().create_future()
            self.gates[query] = gate
            await gate
        result = self.responses.get((request.endpoint, query), [])
        if isinstance(result, Exception):
            raise result
        return result


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def _spin(times=10):
    for _ in range(times):
        await asyncio.sleep(0)


class FacetCoordinatorTests(unittest.IsolatedAsyncioTestCase):
    def _coordinator(self, transport, debounce_seconds=0.0, cache=None):
        coordinator = FacetCoordinator(transport, cache=cache, debounce_seconds=debounce_seconds)
        self.addAsyncCleanup(coordinator.aclose)
        return coordinator

    async def test_duplicate_queries_in_debounce_window_share_one_call(self):
        transport = _FakeTransport({("brands", "ray"): _brands("Ray-Ban")})
        coordinator = self._coordinator(transport, debounce_seconds=0.05)
        first = asyncio.create_task(coordinator.search("brand", "ray"))
        second = asyncio.create_task(coordinator.search("brand", "ray"))
        await _spin(2)
        self.assertEqual(coordinator.phase("brand", "ray"), FacetPhase.SCHEDULED)
        results = await asyncio.gather(first, second)
        self.assertEqual(transport.calls, [("brands", "ray")])
        self.assertEqual(results[0], [FacetOption(1, "Ray-Ban")])
        self.assertEqual(results[0], results[1])
        self.assertEqual(coordinator.phase("brand"), FacetPhase.IDLE)

    async def test_typing_rearms_the_timer_and_only_last_query_runs(self):
        transport = _FakeTransport({("brands", "ray"): _brands("Ray-Ban")})
        coordinator = self._coordinator(transport, debounce_seconds=0.05)
        tasks = []
        for query in ("r", "ra", "ray"):
            tasks.append(asyncio.create_task(coordinator.search("brand", query)))
            await _spin(1)
        results = await asyncio.gather(*tasks)
        self.assertEqual(transport.calls, [("brands", "ray")])
        for result in results:
            self.assertEqual(result, [FacetOption(1, "Ray-Ban")])

    async def test_query_normalization_shares_key(self):
        transport = _FakeTransport({("brands", "ray ban"): _brands("Ray-Ban")})
        coordinator = self._coordinator(transport, debounce_seconds=0.05)
        results = await asyncio.gather(
            coordinator.search("brand", "  Ray   Ban "),
            coordinator.search("brand", "ray ban"),
        )
        self.assertEqual(len(transport.calls), 1)
        self.assertEqual(results[0], results[1])
        self.assertEqual(normalize_query("  Ray   Ban "), "ray ban")

    async def test_empty_query_loads_immediately(self):
        transport = _FakeTransport({("brands", ""): _brands("Acme")})
        coordinator = self._coordinator(transport, debounce_seconds=30)
        result = await asyncio.wait_for(coordinator.search("brand", ""), timeout=1)
        self.assertEqual(result, [FacetOption(1, "Acme")])
        self.assertEqual(coordinator.get_cached("brand"), [FacetOption(1, "Acme")])

    async def test_in_flight_duplicate_joins_existing_request(self):
        transport = _FakeTransport({("brands", ""): _brands("Acme")}, gated=True)
        coordinator = self._coordinator(transport)
        first = asyncio.create_task(coordinator.search("brand", ""))
        await _spin()
        self.assertEqual(coordinator.phase("brand", ""), FacetPhase.IN_FLIGHT)
        second = asyncio.create_task(coordinator.search("brand", ""))
        await _spin()
        transport.gates[""].set_result(None)
        results = await asyncio.gather(first, second)
        self.assertEqual(len(transport.calls), 1)
        self.assertEqual(results[0], results[1])

    async def _run_superseded(self, resolve_order):
        transport = _FakeTransport(
            {("brands", "a"): _brands("Alpha", "Acme"), ("brands", "ab"): _brands("Abbe")},
            gated=True,
        )
        coordinator = self._coordinator(transport)
        older = asyncio.create_task(coordinator.search("brand", "a"))
        await _spin()
        newer = asyncio.create_task(coordinator.search("brand", "ab"))
        await _spin()
        self.assertEqual([query for _, query in transport.calls], ["a", "ab"])
        for query in resolve_order:
            transport.gates[query].set_result(None)
            await _spin()
        older_result, newer_result = await asyncio.gather(older, newer)
        return coordinator, older_result, newer_result

    async def test_stale_response_arriving_last_is_discarded(self):
        coordinator, older_result, newer_result = await self._run_superseded(["ab", "a"])
        self.assertEqual(newer_result, [FacetOption(1, "Abbe")])
        self.assertEqual(coordinator.get_cached("brand"), [FacetOption(1, "Abbe")])
        self.assertIsNone(coordinator.cache.get(("brand", "a")))
        self.assertIsNotNone(coordinator.cache.get(("brand", "ab")))

    async def test_stale_response_arriving_first_is_discarded(self):
        coordinator, older_result, newer_result = await self._run_superseded(["a", "ab"])
        self.assertEqual(len(older_result), 2)
        self.assertEqual(coordinator.get_cached("brand"), [FacetOption(1, "Abbe")])
        self.assertIsNone(coordinator.cache.get(("brand", "a")))

    async def test_fresh_cache_hit_skips_transport(self):
        transport = _FakeTransport({("materials", ""): _brands("CR-39")})
        coordinator = self._coordinator(transport)
        await coordinator.search("material", "")
        again = await coordinator.search("material", "")
        self.assertEqual(again, [FacetOption(1, "CR-39")])
        self.assertEqual(len(transport.calls), 1)

    async def test_invalidate_forces_refetch(self):
        transport = _FakeTransport({("materials", ""): _brands("CR-39")})
        coordinator = self._coordinator(transport)
        await coordinator.search("material", "")
        coordinator.invalidate("material")
        await coordinator.search("material", "")
        self.assertEqual(len(transport.calls), 2)

    async def test_failure_resolves_empty_and_clears_in_flight(self):
        transport = _FakeTransport({("treatments", ""): TransportError("HTTP 500")})
        coordinator = self._coordinator(transport)
        with self.assertLogs("catalog_search.facets", level="WARNING"):
            result = await coordinator.search("treatment", "")
        self.assertEqual(result, [])
        self.assertEqual(coordinator.phase("treatment", ""), FacetPhase.IDLE)
        transport.responses[("treatments", "")] = _brands("Antireflejo")
        result = await coordinator.search("treatment", "")
        self.assertEqual(result, [FacetOption(1, "Antireflejo")])
        self.assertEqual(len(transport.calls), 2)

    async def test_unexpected_transport_exception_is_contained(self):
        transport = _FakeTransport({("suppliers", ""): RuntimeError("boom")})
        coordinator = self._coordinator(transport)
        with self.assertLogs("catalog_search.facets", level="ERROR"):
            result = await coordinator.search("supplier", "")
        self.assertEqual(result, [])

    async def test_stale_entry_is_served_when_refresh_fails(self):
        clock = _Clock()
        transport = _FakeTransport({("brands", ""): _brands("Acme")})
        coordinator = self._coordinator(transport, cache=FilterSessionCache(ttl_seconds=60, clock=clock))
        await coordinator.search("brand", "")
        clock.now += 120
        transport.responses[("brands", "")] = TransportError("timeout")
        with self.assertLogs("catalog_search.facets", level="WARNING"):
            result = await coordinator.search("brand", "")
        self.assertEqual(result, [FacetOption(1, "Acme")])
        self.assertEqual(coordinator.get_cached("brand"), [FacetOption(1, "Acme")])
        self.assertEqual(len(transport.calls), 2)

    async def test_load_all_fans_out_and_isolates_failures(self):
        transport = _FakeTransport(
            {
                ("brands", ""): _brands("Acme"),
                ("materials", ""): TransportError("HTTP 503"),
                ("lens-classes", ""): {"1": "Monofocal"},
            }
        )
        coordinator = self._coordinator(transport)
        with self.assertLogs("catalog_search.facets", level="WARNING"):
            loaded = await coordinator.load_all(["brand", "material", "lens_class"])
        self.assertEqual(loaded["brand"], [FacetOption(1, "Acme")])
        self.assertEqual(loaded["material"], [])
        self.assertEqual(loaded["lens_class"], [FacetOption(1, "Monofocal")])
        self.assertEqual(len(transport.calls), 3)

    async def test_load_all_defaults_to_every_registered_facet(self):
        transport = _FakeTransport()
        coordinator = self._coordinator(transport)
        loaded = await coordinator.load_all()
        self.assertEqual(set(loaded), set(coordinator.facets))
        self.assertEqual(len(transport.calls), len(coordinator.facets))

    async def test_unknown_facet_raises(self):
        coordinator = self._coordinator(_FakeTransport())
        with self.assertRaises(KeyError):
            await coordinator.search("frame_color", "red")

    async def test_close_cancels_pending_debounce(self):
        transport = _FakeTransport()
        coordinator = self._coordinator(transport, debounce_seconds=30)
        pending = asyncio.create_task(coordinator.search("brand", "ray"))
        await _spin()
        self.assertEqual(coordinator.phase("brand"), FacetPhase.SCHEDULED)
        coordinator.close()
        with self.assertRaises(asyncio.CancelledError):
            await pending
        self.assertEqual(transport.calls, [])
        self.assertEqual(coordinator.get_cached("brand"), [])
        with self.assertRaises(RuntimeError):
            await coordinator.search("brand", "")


if __name__ == "__main__":
    unittest.main()

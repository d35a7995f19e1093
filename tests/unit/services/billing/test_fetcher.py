import json
import pytest
from datetime import datetime
from decimal import Decimal

from billing_exporter.schemas.billing import AggregatedElement
from billing_exporter.services.billing.fetcher import (
    LatestObjectFetcher,
    QueryResultFetcher,
    ReportCache,
    RollingWindowFetcher,
    month_prefixes,
)


@pytest.mark.parametrize("now, expected", [
    (datetime(2017, 1, 2), ["my-billing-2017-01-", "my-billing-2016-12-"]),
    (datetime(2016, 7, 2), ["my-billing-2016-07-", "my-billing-2016-06-"]),
    (datetime(2016, 12, 2), ["my-billing-2016-12-", "my-billing-2016-11-"]),
    (datetime(2017, 5, 3), ["my-billing-2017-05-", "my-billing-2017-04-"]),
])
def test_month_prefixes(now, expected):
    assert month_prefixes("my-billing", now) == expected


def _elements(cost="1"):
    return [AggregatedElement(account_id="a", service_name="s", currency="USD", cumulative_cost=Decimal(cost))]


def test_report_cache_slots():
    cache = ReportCache(3)
    cache.reset("p-")
    cache.store(2, "h2", "k2", _elements("2"))
    cache.store(0, "h0", "k0", _elements("1"))

    assert len(cache) == 2
    assert cache.hash_at(0) == "h0"
    assert cache.hash_at(1) is None
    assert [r[0].cumulative_cost for r in cache.reports()] == [Decimal("1"), Decimal("2")]

    cache.reset("q-")
    assert len(cache) == 0
    assert cache.period_prefix == "q-"


def test_report_cache_needs_a_slot():
    with pytest.raises(ValueError):
        ReportCache(0)


class TestLatestObjectFetcher:
    PREFIX = "123456789012-aws-billing-csv-"

    async def _prefix(self):
        return self.PREFIX

    @pytest.mark.asyncio
    async def test_fetches_greatest_key(self, object_store):
        object_store.put(f"{self.PREFIX}2017-01.csv", b"january")
        object_store.put(f"{self.PREFIX}2016-12.csv", b"december")
        object_store.put("other-file.csv", b"ignored")
        fetcher = LatestObjectFetcher(object_store, self._prefix)

        reports = await fetcher.fetch(ReportCache())

        assert [r.origin_key for r in reports] == [f"{self.PREFIX}2017-01.csv"]
        assert reports[0].data == b"january"
        assert reports[0].slot == 0

    @pytest.mark.asyncio
    async def test_unchanged_content_hash_skips_download(self, object_store):
        object_store.put(f"{self.PREFIX}2017-01.csv", b"january", content_hash="etag-1")
        fetcher = LatestObjectFetcher(object_store, self._prefix)
        cache = ReportCache()

        reports = await fetcher.fetch(cache)
        cache.store(0, reports[0].content_hash, reports[0].origin_key, _elements())

        assert await fetcher.fetch(cache) == []
        assert object_store.downloads == [f"{self.PREFIX}2017-01.csv"]

    @pytest.mark.asyncio
    async def test_changed_content_hash_downloads_again(self, object_store):
        key = f"{self.PREFIX}2017-01.csv"
        object_store.put(key, b"v1", content_hash="etag-1")
        fetcher = LatestObjectFetcher(object_store, self._prefix)
        cache = ReportCache()
        cache.reset(self.PREFIX)
        cache.store(0, "etag-1", key, _elements())

        object_store.put(key, b"v2", content_hash="etag-2")
        reports = await fetcher.fetch(cache)

        assert [r.data for r in reports] == [b"v2"]

    @pytest.mark.asyncio
    async def test_no_objects_is_not_an_error(self, object_store):
        fetcher = LatestObjectFetcher(object_store, self._prefix)

        assert await fetcher.fetch(ReportCache()) == []


class TestRollingWindowFetcher:
    def _day(self, object_store, day, data=b"[]", month="2017-01", content_hash=None):
        key = f"my-billing-{month}-{day:02d}.json"
        object_store.put(key, data, content_hash)
        return key

    def test_slot_for(self, object_store, clock):
        fetcher = RollingWindowFetcher(object_store, "my-billing", clock)

        assert fetcher.slot_for("my-billing-2017-01-01.json") == 0
        assert fetcher.slot_for("my-billing-2017-01-31.json") == 30
        assert fetcher.slot_for("my-billing-2017-01-xx.json") is None
        assert fetcher.slot_for("a.json") is None

    def test_slot_out_of_window(self, object_store, clock):
        fetcher = RollingWindowFetcher(object_store, "my-billing", clock, size=10)

        assert fetcher.slot_for("my-billing-2017-01-11.json") is None

    @pytest.mark.asyncio
    async def test_downloads_every_day_of_current_month(self, object_store, clock):
        keys = [self._day(object_store, d, data=f"[{d}]".encode()) for d in (1, 2)]
        self._day(object_store, 31, month="2016-12")
        fetcher = RollingWindowFetcher(object_store, "my-billing", clock)
        cache = ReportCache(32)

        reports = await fetcher.fetch(cache)

        assert sorted(r.origin_key for r in reports) == keys
        assert {r.slot for r in reports} == {0, 1}
        assert cache.period_prefix == "my-billing-2017-01-"

    @pytest.mark.asyncio
    async def test_falls_back_to_previous_month(self, object_store, clock):
        key = self._day(object_store, 31, month="2016-12")
        fetcher = RollingWindowFetcher(object_store, "my-billing", clock)
        cache = ReportCache(32)

        reports = await fetcher.fetch(cache)

        assert [(r.origin_key, r.slot) for r in reports] == [(key, 30)]
        assert cache.period_prefix == "my-billing-2016-12-"

    @pytest.mark.asyncio
    async def test_cached_days_are_skipped(self, object_store, clock):
        day1 = self._day(object_store, 1, content_hash="h1")
        day2 = self._day(object_store, 2, content_hash="h2")
        fetcher = RollingWindowFetcher(object_store, "my-billing", clock)
        cache = ReportCache(32)
        cache.reset("my-billing-2017-01-")
        cache.store(0, "h1", day1, _elements())

        reports = await fetcher.fetch(cache)

        assert [r.origin_key for r in reports] == [day2]
        assert object_store.downloads == [day2]

    @pytest.mark.asyncio
    async def test_prefix_change_invalidates_window(self, object_store, clock):
        self._day(object_store, 31, month="2016-12", content_hash="dec-31")
        fetcher = RollingWindowFetcher(object_store, "my-billing", clock)
        cache = ReportCache(32)
        cache.reset("my-billing-2016-12-")
        cache.store(30, "dec-31", "my-billing-2016-12-31.json", _elements())

        self._day(object_store, 1, content_hash="jan-01")
        reports = await fetcher.fetch(cache)

        assert [r.origin_key for r in reports] == ["my-billing-2017-01-01.json"]
        assert cache.period_prefix == "my-billing-2017-01-"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_one_failing_download_does_not_abort_fetch(self, object_store, clock):
        day1 = self._day(object_store, 1)
        day2 = self._day(object_store, 2, data=b"[2]")
        object_store.failing_keys.add(day1)
        fetcher = RollingWindowFetcher(object_store, "my-billing", clock)

        reports = await fetcher.fetch(ReportCache(32))

        assert [r.origin_key for r in reports] == [day2]

    @pytest.mark.asyncio
    async def test_nothing_this_or_last_month(self, object_store, clock):
        self._day(object_store, 5, month="2016-10")
        fetcher = RollingWindowFetcher(object_store, "my-billing", clock)

        assert await fetcher.fetch(ReportCache(32)) == []


class TestQueryResultFetcher:
    @pytest.mark.asyncio
    async def test_runs_query_for_invoice_month(self, clock):
        months = []

        async def run_query(invoice_month):
            months.append(invoice_month)
            return [{"project_id": "p1", "service": "Compute Engine", "currency": "EUR", "cost": "1.5"}]

        fetcher = QueryResultFetcher(run_query, clock, name="bq://p.d.t")
        cache = ReportCache()

        reports = await fetcher.fetch(cache)

        assert months == ["201701"]
        assert reports[0].origin_key == "bq://p.d.t:201701"
        assert json.loads(reports[0].data)[0]["project_id"] == "p1"
        assert cache.period_prefix == "201701"

    @pytest.mark.asyncio
    async def test_identical_result_is_skipped(self, clock):
        async def run_query(invoice_month):
            return [{"project_id": "p1", "cost": "1"}]

        fetcher = QueryResultFetcher(run_query, clock)
        cache = ReportCache()
        first = await fetcher.fetch(cache)
        cache.store(0, first[0].content_hash, first[0].origin_key, _elements())

        assert await fetcher.fetch(cache) == []

    @pytest.mark.asyncio
    async def test_new_invoice_month_resets_cache(self, clock):
        async def run_query(invoice_month):
            return []

        fetcher = QueryResultFetcher(run_query, clock)
        cache = ReportCache()
        cache.reset("201612")
        cache.store(0, "old", "q:201612", _elements())

        await fetcher.fetch(cache)

        assert cache.period_prefix == "201701"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_query_errors_propagate(self, clock):
        async def run_query(invoice_month):
            raise RuntimeError("quota exceeded")

        fetcher = QueryResultFetcher(run_query, clock)

        with pytest.raises(RuntimeError):
            await fetcher.fetch(ReportCache())
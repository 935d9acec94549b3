from __future__ import annotations

import sqlite3

import pytest
from conftest import FakeUpstream, ManualClock, make_job

from job_board.cache import DatasetCache, QueryResultCache
from job_board.db import SavedJobIndex
from job_board.fetchers import UpstreamTimeout
from job_board.models import SearchQuery
from job_board.search import (
    STRATEGY_CACHE,
    STRATEGY_LOCAL,
    STRATEGY_REMOTE,
    JobSearch,
    matches,
    sort_records,
)


class FakeSavedStore:
    def __init__(self, saved: dict[int, set[str]] | None = None, error: Exception | None = None):
        self.saved = saved or {}
        self.error = error
        self.lookups: list[list[str]] = []

    def saved_job_ids(self, user_id, job_ids):
        self.lookups.append(list(job_ids))
        if self.error is not None:
            raise self.error
        return self.saved.get(user_id, set()) & set(job_ids)


def make_search(
    upstream: FakeUpstream, clock: ManualClock, row_cap: int = 1000, store=None
) -> JobSearch:
    dataset = DatasetCache(upstream, ttl_seconds=3600, batch_size=1000, clock=clock)
    results = QueryResultCache(ttl_seconds=300, clock=clock)
    return JobSearch(upstream, dataset, results, row_cap=row_cap, saved_store=store)


def ids(records) -> list[str]:
    return [r["job_id"] for r in records]


def test_browse_all_sorts_by_posting_date_desc(clock: ManualClock) -> None:
    upstream = FakeUpstream(
        [
            make_job("A", posting_date="2024-01-01T00:00:00.000"),
            make_job("B", posting_date="2024-03-01T00:00:00.000"),
            make_job("C", posting_date="2024-02-01T00:00:00.000"),
        ]
    )
    search = make_search(upstream, clock)

    result = search.search(SearchQuery.build(), page=1, page_size=20)

    assert ids(result.records) == ["B", "C", "A"]
    assert result.total == 3
    assert result.strategy == STRATEGY_LOCAL
    assert upstream.filtered_calls == []


def test_truncated_remote_result_falls_back_to_full_scan(clock: ManualClock) -> None:
    clerks = [make_job(f"c{i}", title=f"Clerk {i}") for i in range(1247)]
    others = [make_job(f"o{i}", title="Engineer") for i in range(300)]
    upstream = FakeUpstream(clerks + others, filtered=clerks[:1000])
    search = make_search(upstream, clock)

    result = search.search(SearchQuery.build(q="clerk"), page=1, page_size=20)

    assert len(upstream.filtered_calls) == 1
    assert result.strategy == STRATEGY_LOCAL
    assert result.total == 1247
    assert len(result.records) == 20


def test_small_remote_result_is_trusted(clock: ManualClock) -> None:
    matches_ = [make_job("A", title="Clerk"), make_job("B", title="Clerk")]
    upstream = FakeUpstream([make_job("X")], filtered=matches_)
    search = make_search(upstream, clock)

    result = search.search(SearchQuery.build(q="clerk"))

    assert result.strategy == STRATEGY_REMOTE
    assert result.total == 2
    assert upstream.batch_calls == []


@pytest.mark.parametrize(
    "upstream_kwargs",
    [{"filtered": []}, {"filtered_error": UpstreamTimeout("slow")}],
)
def test_empty_or_failed_remote_query_falls_back(clock: ManualClock, upstream_kwargs) -> None:
    upstream = FakeUpstream(
        [make_job("A", title="Clerk"), make_job("B", title="Engineer")], **upstream_kwargs
    )
    search = make_search(upstream, clock)

    result = search.search(SearchQuery.build(q="clerk"))

    assert result.strategy == STRATEGY_LOCAL
    assert ids(result.records) == ["A"]


def test_remote_duplicates_are_removed(clock: ManualClock) -> None:
    upstream = FakeUpstream(
        filtered=[
            make_job("A", title="Clerk"),
            make_job("A", title="Clerk again"),
            make_job("B", title="Clerk"),
        ]
    )
    search = make_search(upstream, clock)

    result = search.search(SearchQuery.build(q="clerk"))

    assert ids(result.records) == ["A", "B"]
    assert result.records[0]["business_title"] == "Clerk"


def test_repeat_query_is_served_from_cache(clock: ManualClock) -> None:
    upstream = FakeUpstream([make_job(str(i), title="Clerk") for i in range(30)], filtered=[])
    search = make_search(upstream, clock)

    first = search.search(SearchQuery.build(q="Clerk"), page=1, page_size=10)
    calls = (len(upstream.batch_calls), len(upstream.filtered_calls))
    second = search.search(SearchQuery.build(q="  clerk "), page=2, page_size=10)

    assert second.strategy == STRATEGY_CACHE
    assert (len(upstream.batch_calls), len(upstream.filtered_calls)) == calls
    assert first.total == second.total == 30
    assert set(ids(first.records)).isdisjoint(ids(second.records))


def test_pagination_reports_full_total(clock: ManualClock) -> None:
    upstream = FakeUpstream([make_job(str(i)) for i in range(25)])
    search = make_search(upstream, clock)
    query = SearchQuery.build()

    pages = [search.search(query, page=p, page_size=10) for p in (1, 2, 3, 4)]

    assert [len(p.records) for p in pages] == [10, 10, 5, 0]
    assert {p.total for p in pages} == {25}


def test_title_sort_is_case_insensitive(clock: ManualClock) -> None:
    upstream = FakeUpstream(
        [make_job("1", title="beta"), make_job("2", title="Alpha"), make_job("3", title="gamma")]
    )
    search = make_search(upstream, clock)

    result = search.search(SearchQuery.build(sort="title_asc"))
    titles = [r["business_title"].casefold() for r in result.records]

    assert titles == sorted(titles)
    assert ids(result.records) == ["2", "1", "3"]


def test_salary_desc_puts_missing_salaries_last(clock: ManualClock) -> None:
    upstream = FakeUpstream(
        [
            make_job("none", salary_from=None),
            make_job("low", salary_from="40000"),
            make_job("junk", salary_from="n/a"),
            make_job("high", salary_from="95000.50"),
        ]
    )
    search = make_search(upstream, clock)

    result = search.search(SearchQuery.build(sort="salary_desc"))

    assert ids(result.records) == ["high", "low", "none", "junk"]


def test_date_asc_puts_missing_dates_first() -> None:
    records = [
        make_job("new", posting_date="2024-05-01T00:00:00.000"),
        make_job("none", posting_date=None),
        make_job("old", posting_date="2023-05-01T00:00:00.000"),
        make_job("bad", posting_date="someday"),
    ]

    assert ids(sort_records(records, "date_asc")) == ["none", "bad", "old", "new"]
    assert ids(sort_records(records, "date_desc")) == ["new", "old", "none", "bad"]


def test_matches_applies_each_filter() -> None:
    record = make_job(
        "1",
        title="Senior Clerk",
        category="Engineering",
        location="Queens",
        work_location_1="Long Island City",
        salary_from="50000",
        salary_to="70000",
    )

    assert matches(record, SearchQuery.build(q="CLERK"))
    assert matches(record, SearchQuery.build(category="engineering"))
    assert not matches(record, SearchQuery.build(category="engineer"))
    assert matches(record, SearchQuery.build(location="island"))
    assert matches(record, SearchQuery.build(salary_min=50000, salary_max=70000))
    assert not matches(record, SearchQuery.build(salary_min=50001))
    assert not matches(record, SearchQuery.build(salary_max=69999))


def test_salary_filters_exclude_records_without_salary() -> None:
    record = make_job("1", salary_from=None, salary_to="")

    assert not matches(record, SearchQuery.build(salary_min=0))
    assert not matches(record, SearchQuery.build(salary_max=1_000_000))
    assert matches(record, SearchQuery.build())


def test_saved_flags_are_attached_for_page_only(clock: ManualClock) -> None:
    upstream = FakeUpstream([make_job(str(i)) for i in range(5)])
    store = FakeSavedStore({7: {"1", "4"}})
    search = make_search(upstream, clock, store=store)

    result = search.search(SearchQuery.build(sort="title_asc"), page=1, page_size=2, requester_id=7)

    assert store.lookups == [["0", "1"]]
    assert [(r["job_id"], r["is_saved"]) for r in result.records] == [("0", False), ("1", True)]


def test_anonymous_search_skips_saved_lookup(clock: ManualClock) -> None:
    upstream = FakeUpstream([make_job("1")])
    store = FakeSavedStore({7: {"1"}})
    search = make_search(upstream, clock, store=store)

    result = search.search(SearchQuery.build())

    assert store.lookups == []
    assert result.records[0]["is_saved"] is False


def test_saved_lookup_failure_degrades_to_unsaved(clock: ManualClock) -> None:
    upstream = FakeUpstream([make_job("1"), make_job("2")])
    store = FakeSavedStore(error=sqlite3.OperationalError("database is locked"))
    search = make_search(upstream, clock, store=store)

    result = search.search(SearchQuery.build(), requester_id=7)

    assert result.total == 2
    assert all(r["is_saved"] is False for r in result.records)


def test_page_records_are_normalized_without_touching_cache(clock: ManualClock) -> None:
    upstream = FakeUpstream([make_job("1", title="Attorneyâ€™s Aide &amp; Clerk")])
    search = make_search(upstream, clock)

    result = search.search(SearchQuery.build())

    assert result.records[0]["business_title"] == "Attorney's Aide & Clerk"
    assert search.dataset.get_all()[0]["business_title"] == "Attorneyâ€™s Aide &amp; Clerk"


def test_categories_are_sorted_and_distinct(clock: ManualClock) -> None:
    upstream = FakeUpstream(
        [
            make_job("1", category="Legal Affairs"),
            make_job("2", category="Engineering"),
            make_job("3", category="Legal Affairs"),
            make_job("4", category=None),
        ]
    )
    search = make_search(upstream, clock)

    assert search.categories() == ["Engineering", "Legal Affairs"]


def test_wildcard_characters_match_literally_on_both_paths(clock: ManualClock) -> None:
    records = [
        make_job("1", title="IT Support"),
        make_job("2", title="ITxSupport"),
        make_job("3", title="Clerk"),
    ]
    query = SearchQuery.build(q="it_support")

    remote = make_search(FakeUpstream(records, filtered=records[:2]), clock).search(query)
    local = make_search(FakeUpstream(records, filtered=[]), clock).search(query)

    assert remote.strategy == STRATEGY_REMOTE
    assert local.strategy == STRATEGY_LOCAL
    assert remote.total == local.total == 0


def test_remote_rows_are_rechecked_against_filters(clock: ManualClock) -> None:
    rows = [make_job("1", title="Clerk Typist"), make_job("2", title="Clerk and Typist")]
    search = make_search(FakeUpstream(filtered=rows), clock)

    result = search.search(SearchQuery.build(q="clerk typist"))

    assert result.strategy == STRATEGY_REMOTE
    assert ids(result.records) == ["1"]


def test_text_filters_fold_case_and_whitespace() -> None:
    record = make_job("1", title="Clerk  Typist", location="Straße 5")

    assert matches(record, SearchQuery.build(q="clerk typist"))
    assert matches(record, SearchQuery.build(location="STRASSE"))


def test_non_ascii_query_skips_remote_filter(clock: ManualClock) -> None:
    upstream = FakeUpstream([make_job("1", location="Café Plaza")], filtered=[make_job("9")])
    search = make_search(upstream, clock)

    result = search.search(SearchQuery.build(location="CAFÉ"))

    assert upstream.filtered_calls == []
    assert result.strategy == STRATEGY_LOCAL
    assert ids(result.records) == ["1"]


def test_category_filter_accepts_displayed_category(clock: ManualClock) -> None:
    upstream = FakeUpstream(
        [
            make_job("1", category="Administration &amp; HR"),
            make_job("2", category="Administration & HR"),
            make_job("3", category="Engineering"),
        ],
        filtered=[],
    )
    search = make_search(upstream, clock)

    categories = search.categories()
    result = search.search(SearchQuery.build(category=categories[0]))

    assert categories == ["Administration & HR", "Engineering"]
    assert ids(result.records) == ["1", "2"]


def test_unopenable_store_degrades_to_unsaved(clock: ManualClock, tmp_path) -> None:
    upstream = FakeUpstream([make_job("1")])
    store = SavedJobIndex(tmp_path / "missing_dir" / "job_board.db")
    search = make_search(upstream, clock, store=store)

    result = search.search(SearchQuery.build(), requester_id=7)

    assert result.total == 1
    assert result.records[0]["is_saved"] is False


def test_saved_index_reads_bookmarks(clock: ManualClock, db, db_path) -> None:
    db.insert_saved_job(7, "2")
    upstream = FakeUpstream([make_job("1"), make_job("2")])
    search = make_search(upstream, clock, store=SavedJobIndex(db_path))

    result = search.search(SearchQuery.build(), requester_id=7)

    assert {r["job_id"]: r["is_saved"] for r in result.records} == {"1": False, "2": True}

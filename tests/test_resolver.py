"""
Tests for short code resolution, click counting and per-owner stats.
"""

import logging

import pytest

from tinylink import crud
from tinylink.errors import NotFound, StoreUnavailable
from tinylink.store import MemoryLinkStore


class FlakyCounterStore(MemoryLinkStore):
    def increment_clicks(self, link_id):
        raise StoreUnavailable("counter down")


class TestResolve:
    def test_returns_destination_and_counts_click(self, store, alice):
        link = crud.allocate(store, alice, "example.org")

        assert crud.resolve(store, link.code) == "https://example.org"
        assert store.get_link(link.id).clicks == 1

    def test_repeated_resolves_count_each_click(self, store, alice):
        link = crud.allocate(store, alice, "example.org")

        results = {crud.resolve(store, link.code) for _ in range(5)}

        assert results == {"https://example.org"}
        assert store.get_link(link.id).clicks == 5

    def test_missing_code(self, store):
        with pytest.raises(NotFound):
            crud.resolve(store, "nope123")

    def test_inactive_link_is_not_found_and_not_counted(self, store, alice):
        link = crud.allocate(store, alice, "example.org", active=False)

        with pytest.raises(NotFound) as exc_info:
            crud.resolve(store, link.code)

        assert "example.org" not in str(exc_info.value)
        assert store.get_link(link.id).clicks == 0

    def test_inactive_and_missing_look_identical(self, store, alice):
        link = crud.allocate(store, alice, "example.org", active=False)

        with pytest.raises(NotFound) as inactive:
            crud.resolve(store, link.code)
        with pytest.raises(NotFound) as missing:
            crud.resolve(store, "absent1")

        assert inactive.value.detail == missing.value.detail
        assert type(inactive.value) is type(missing.value)

    def test_reactivated_link_resolves_again(self, store, alice):
        link = crud.allocate(store, alice, "example.org", active=False)
        crud.update_link(store, alice, link.id, active=True)

        assert crud.resolve(store, link.code) == "https://example.org"

    def test_counter_failure_does_not_block_redirect(self, caplog):
        store = FlakyCounterStore()
        link = crud.allocate(store, None, "example.org")

        with caplog.at_level(logging.ERROR, logger="tinylink.crud"):
            assert crud.resolve(store, link.code) == "https://example.org"

        assert "Failed to increment click" in caplog.text
        assert store.get_link(link.id).clicks == 0

    def test_lookup_failure_propagates(self):
        class DownStore(MemoryLinkStore):
            def get_link_by_code(self, code):
                raise StoreUnavailable()

        with pytest.raises(StoreUnavailable):
            crud.resolve(DownStore(), "abcdefg")


class TestStats:
    def test_no_links(self, store, alice):
        stats = crud.stats(store, alice)
        assert (stats.total_links, stats.total_clicks, stats.average_clicks) == (0, 0, 0)

    def test_sums_and_averages_owned_links(self, store, alice, bob):
        counts = [3, 0, 4]
        for n in counts:
            link = crud.allocate(store, alice, "example.com")
            for _ in range(n):
                crud.resolve(store, link.code)
        other = crud.allocate(store, bob, "example.org")
        crud.resolve(store, other.code)

        stats = crud.stats(store, alice)

        assert stats.total_links == 3
        assert stats.total_clicks == 7
        assert stats.average_clicks == pytest.approx(7 / 3)

    def test_reflects_latest_clicks(self, store, alice):
        link = crud.allocate(store, alice, "example.com")
        assert crud.stats(store, alice).total_clicks == 0

        crud.resolve(store, link.code)

        assert crud.stats(store, alice).total_clicks == 1


def test_end_to_end_scenario(store, alice):
    link = crud.allocate(store, alice, "example.org")
    assert len(link.code) == 7
    assert link.clicks == 0

    assert crud.resolve(store, link.code) == "https://example.org"
    assert store.get_link(link.id).clicks == 1

    stats = crud.stats(store, alice)
    assert stats.total_links == 1
    assert stats.total_clicks == 1
    assert stats.average_clicks == 1

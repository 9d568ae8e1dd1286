"""Tests for RequestStore merge semantics."""

from __future__ import annotations

import itertools
import threading

from echohook.store import RequestStore, matches_filter


# ---------------------------------------------------------------------------
# Live appends
# ---------------------------------------------------------------------------


class TestAppendLive:
    def test_prepends_newest_first(self, make_event):
        store = RequestStore()
        store.append_live(make_event("a", 1))
        store.append_live(make_event("b", 2))
        assert store.request_ids() == ["b", "a"]

    def test_duplicate_is_noop(self, make_event):
        store = RequestStore()
        assert store.append_live(make_event("a", 1))
        assert not store.append_live(make_event("a", 1, body="changed"))
        assert len(store) == 1
        assert store.get("a").body == '{"ok": true}'

    def test_preloaded_scenario(self, make_event):
        r1, r2, r3 = make_event("r1", 1), make_event("r2", 2), make_event("r3", 3)
        store = RequestStore([r1, r2, r3])

        store.append_live(make_event("r2", 2))
        assert store.request_ids() == ["r1", "r2", "r3"]
        assert len(store) == 3

        store.append_live(make_event("r4", 4))
        assert store.request_ids() == ["r4", "r1", "r2", "r3"]
        assert len(store) == 4

    def test_initial_sequence_deduplicated(self, make_event):
        store = RequestStore([make_event("a", 1), make_event("a", 1), make_event("b", 0)])
        assert store.request_ids() == ["a", "b"]


# ---------------------------------------------------------------------------
# Historical merge
# ---------------------------------------------------------------------------


class TestLoadHistorical:
    def test_into_empty_store(self, make_event):
        store = RequestStore()
        batch = [make_event("c", 3), make_event("b", 2), make_event("a", 1)]
        assert store.load_historical(batch) == 3
        assert store.request_ids() == ["c", "b", "a"]

    def test_skips_ids_already_live(self, make_event):
        store = RequestStore()
        store.append_live(make_event("b", 2))
        inserted = store.load_historical([make_event("b", 2), make_event("a", 1)])
        assert inserted == 1
        assert store.request_ids() == ["b", "a"]

    def test_skips_repeats_inside_batch(self, make_event):
        store = RequestStore()
        assert store.load_historical([make_event("a", 1), make_event("a", 1)]) == 1

    def test_live_entries_stay_ahead_of_older_history(self, make_event):
        store = RequestStore()
        store.append_live(make_event("live-2", 20))
        store.append_live(make_event("live-1", 10))  # arrived later, older stamp
        store.load_historical([make_event("h5", 5), make_event("h1", 1)])
        assert store.request_ids() == ["live-1", "live-2", "h5", "h1"]

    def test_history_newer_than_live_goes_first(self, make_event):
        store = RequestStore()
        store.append_live(make_event("live", 1))
        store.load_historical([make_event("h", 9)])
        assert store.request_ids() == ["h", "live"]

    def test_insert_listener(self, make_event):
        seen = []
        store = RequestStore(on_insert=lambda e, source: seen.append((e.request_id, source)))
        store.append_live(make_event("a", 2))
        store.append_live(make_event("a", 2))
        store.load_historical([make_event("a", 2), make_event("b", 1)])
        assert seen == [("a", "live"), ("b", "historical")]


# ---------------------------------------------------------------------------
# Convergence
# ---------------------------------------------------------------------------


class TestConvergence:
    def test_set_independent_of_interleaving(self, make_event):
        live = [make_event("x", 3), make_event("y", 4), make_event("shared", 2)]
        history = [make_event("shared", 2), make_event("h1", 1), make_event("h0", 0)]
        expected = {"x", "y", "shared", "h1", "h0"}

        # history lands at every possible point in the live sequence
        for split in range(len(live) + 1):
            for order in itertools.permutations(live):
                store = RequestStore()
                for event in order[:split]:
                    store.append_live(event)
                store.load_historical(history)
                for event in order[split:]:
                    store.append_live(event)
                assert set(store.request_ids()) == expected
                assert len(store) == len(expected)

    def test_concurrent_writers(self, make_event):
        store = RequestStore()
        events = [make_event(f"r{i}", i) for i in range(200)]
        barrier = threading.Barrier(4)

        def live_writer(chunk):
            barrier.wait()
            for event in chunk:
                store.append_live(event)

        def history_writer():
            barrier.wait()
            store.load_historical(events)

        threads = [
            threading.Thread(target=live_writer, args=(events[0::3],)),
            threading.Thread(target=live_writer, args=(events[1::3],)),
            threading.Thread(target=live_writer, args=(events[2::3],)),
            threading.Thread(target=history_writer),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        ids = store.request_ids()
        assert len(ids) == len(set(ids)) == 200


def test_read_helpers(make_event):
    store = RequestStore([make_event("a", 1)])
    assert "a" in store
    assert "b" not in store
    assert [e.request_id for e in store] == ["a"]
    assert store.get("missing") is None
    snapshot = store.snapshot()
    store.clear()
    assert len(store) == 0
    assert len(snapshot) == 1


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


class TestFilter:
    def test_empty_query_matches(self, make_event):
        assert matches_filter(make_event("a"), "")

    def test_method_and_path(self, make_event):
        event = make_event("a", method="PATCH", path="/i/sess-1/orders")
        assert matches_filter(event, "patch")
        assert matches_filter(event, "ORDERS")
        assert not matches_filter(event, "delete")

    def test_user_agent(self, make_event):
        event = make_event("a", user_agent="Stripe/1.0 (+https://stripe.com)")
        assert matches_filter(event, "stripe")
        assert not matches_filter(make_event("b", user_agent=""), "stripe")

    def test_header_names_and_values(self, make_event):
        event = make_event("a", headers={"X-GitHub-Event": "push"})
        assert matches_filter(event, "x-github")
        assert matches_filter(event, "PUSH")

    def test_body_not_searched(self, make_event):
        event = make_event("a", body='{"secret": "needle"}')
        assert not matches_filter(event, "needle")

    def test_store_filter_newest_first(self, make_event):
        store = RequestStore()
        store.append_live(make_event("a", 1, method="GET"))
        store.append_live(make_event("b", 2))
        store.append_live(make_event("c", 3, method="GET"))
        assert [e.request_id for e in store.filter("get")] == ["c", "a"]
        assert len(store.filter("")) == 3

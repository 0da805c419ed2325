"""Tests for PaginationCursor, CursorPaginator and the in-memory paginate()."""

import pytest

from mailsync.cache.pagination import (
    DEFAULT_LIMIT,
    CursorPaginator,
    PaginationCursor,
    next_cursor,
    paginate,
)
from mailsync.providers.types import ProviderType
from mailsync.storage.db import MessageStore


@pytest.fixture
def paginator(store: MessageStore) -> CursorPaginator:
    return CursorPaginator(store)


def _seed(store: MessageStore, make_message, items: list[tuple[str, int]]) -> None:
    for mid, ts in items:
        store.upsert_message(make_message(mid, internal_date=ts))


# ── PaginationCursor.normalized ────────────────────────────────────────────────


class TestNormalize:
    @pytest.mark.parametrize("limit", [0, -1, -50])
    def test_non_positive_limit_uses_default(self, limit: int) -> None:
        assert PaginationCursor(limit=limit).normalized().limit == DEFAULT_LIMIT

    def test_positive_limit_kept(self) -> None:
        assert PaginationCursor(limit=7).normalized().limit == 7

    def test_full_cursor_kept(self) -> None:
        cursor = PaginationCursor("m1", 100, 10).normalized()
        assert cursor.has_position
        assert (cursor.after_message_id, cursor.after_internal_date) == ("m1", 100)

    def test_date_without_id_is_no_cursor(self) -> None:
        cursor = PaginationCursor(after_internal_date=100, limit=10).normalized()
        assert cursor == PaginationCursor(limit=10)

    def test_id_without_date_is_no_cursor(self) -> None:
        cursor = PaginationCursor(after_message_id="m1", limit=10).normalized()
        assert cursor == PaginationCursor(limit=10)


# ── Token form ─────────────────────────────────────────────────────────────────


class TestToken:
    def test_round_trip(self) -> None:
        cursor = PaginationCursor("18c2f0a", 1_709_283_600_000, 25)
        assert PaginationCursor.from_token(cursor.to_token()) == cursor

    def test_token_is_url_safe(self) -> None:
        token = PaginationCursor("a/b+c", 1, 1).to_token()
        assert all(ch.isalnum() or ch in "-_" for ch in token)

    def test_round_trip_keeps_provider(self) -> None:
        cursor = PaginationCursor("m", 5, 10, "outlook")
        assert PaginationCursor.from_token(cursor.to_token()) == cursor

    def test_limit_argument_overrides_token(self) -> None:
        token = PaginationCursor("m", 5, 10).to_token()
        assert PaginationCursor.from_token(token, limit=3).limit == 3

    @pytest.mark.parametrize("token", [None, ""])
    def test_empty_token_is_empty_cursor(self, token: str | None) -> None:
        assert PaginationCursor.from_token(token, limit=4) == PaginationCursor(limit=4)

    @pytest.mark.parametrize("token", ["%%%", "bm90IGpzb24", "WzEsMl0"])
    def test_malformed_token_is_empty_cursor(self, token: str) -> None:
        assert PaginationCursor.from_token(token) == PaginationCursor()


# ── CursorPaginator over the store ─────────────────────────────────────────────


class TestCursorPaginator:
    def test_empty_cursor_starts_at_most_recent(
        self, store: MessageStore, paginator: CursorPaginator, make_message
    ) -> None:
        _seed(store, make_message, [("a", 100), ("b", 300), ("c", 200)])

        page = paginator.page("user_1", PaginationCursor(limit=2))
        assert [m.message_id for m in page] == ["b", "c"]

    def test_chained_pages_cover_everything_once(
        self, store: MessageStore, paginator: CursorPaginator, make_message
    ) -> None:
        # Ties on internal_date included on purpose.
        items = [(f"m{i:02d}", (i // 3) * 10) for i in range(17)]
        _seed(store, make_message, items)

        seen: list[str] = []
        cursor: PaginationCursor | None = PaginationCursor(limit=4)
        while cursor is not None:
            page = paginator.page("user_1", cursor)
            seen.extend(m.message_id for m in page)
            cursor = next_cursor(page, 4)

        expected = [mid for mid, _ in sorted(items, key=lambda t: (t[1], t[0]), reverse=True)]
        assert seen == expected
        assert len(set(seen)) == 17

    def test_cursor_past_oldest_returns_empty(
        self, store: MessageStore, paginator: CursorPaginator, make_message
    ) -> None:
        _seed(store, make_message, [("a", 100), ("b", 200)])

        assert paginator.page("user_1", PaginationCursor("a", 100, 10)) == []

    def test_half_cursor_behaves_like_no_cursor(
        self, store: MessageStore, paginator: CursorPaginator, make_message
    ) -> None:
        _seed(store, make_message, [("a", 100), ("b", 200), ("c", 300)])

        with_half = paginator.page("user_1", PaginationCursor(after_internal_date=150, limit=10))
        without = paginator.page("user_1", PaginationCursor(limit=10))
        assert with_half == without
        assert [m.message_id for m in with_half] == ["c", "b", "a"]

    def test_same_id_and_date_across_providers_both_returned(
        self, store: MessageStore, paginator: CursorPaginator, make_message
    ) -> None:
        store.upsert_message(make_message("a", internal_date=100, provider=ProviderType.GMAIL))
        store.upsert_message(make_message("a", internal_date=100, provider=ProviderType.OUTLOOK))

        first = paginator.page("user_1", PaginationCursor(limit=1))
        second = paginator.page("user_1", next_cursor(first, 1))

        assert [m.provider for m in first + second] == [ProviderType.OUTLOOK, ProviderType.GMAIL]

    def test_default_limit_applied(self, store: MessageStore, make_message) -> None:
        _seed(store, make_message, [(f"m{i}", i) for i in range(5)])
        paginator = CursorPaginator(store, default_limit=3)

        assert len(paginator.page("user_1", PaginationCursor(limit=0))) == 3

    def test_provider_filter(self, store: MessageStore, paginator: CursorPaginator, make_message) -> None:
        store.upsert_message(make_message("g", provider=ProviderType.GMAIL))
        store.upsert_message(make_message("o", provider=ProviderType.OUTLOOK))

        page = paginator.page("user_1", PaginationCursor(limit=5), provider=ProviderType.GMAIL)
        assert [m.message_id for m in page] == ["g"]


# ── paginate / next_cursor ─────────────────────────────────────────────────────


class TestInMemoryPaginate:
    def test_sorts_filters_and_limits(self, make_message) -> None:
        msgs = [make_message(mid, internal_date=ts) for mid, ts in [("a", 1), ("b", 3), ("c", 2)]]

        assert [m.message_id for m in paginate(msgs, PaginationCursor(limit=2))] == ["b", "c"]
        assert [m.message_id for m in paginate(msgs, PaginationCursor("c", 2, 5))] == ["a"]

    def test_matches_store_order_on_ties(
        self, store: MessageStore, paginator: CursorPaginator, make_message
    ) -> None:
        msgs = [make_message(mid, internal_date=5) for mid in ("x", "z", "y")]
        for m in msgs:
            store.upsert_message(m)

        in_memory = [m.message_id for m in paginate(msgs, PaginationCursor(limit=10))]
        from_store = [m.message_id for m in paginator.page("user_1", PaginationCursor(limit=10))]
        assert in_memory == from_store == ["z", "y", "x"]


    def test_chained_limit_one_over_provider_tie(self, make_message) -> None:
        msgs = [
            make_message("a", internal_date=100, provider=ProviderType.GMAIL),
            make_message("a", internal_date=100, provider=ProviderType.OUTLOOK),
        ]

        first = paginate(msgs, PaginationCursor(limit=1))
        second = paginate(msgs, next_cursor(first, 1))
        third = paginate(msgs, next_cursor(second, 1))

        assert [m.provider for m in first + second] == [ProviderType.OUTLOOK, ProviderType.GMAIL]
        assert third == []

    def test_cursor_without_provider_skips_whole_tie(self, make_message) -> None:
        msgs = [
            make_message("a", internal_date=100, provider=ProviderType.GMAIL),
            make_message("a", internal_date=100, provider=ProviderType.OUTLOOK),
            make_message("b", internal_date=50),
        ]

        page = paginate(msgs, PaginationCursor("a", 100, 5))
        assert [m.message_id for m in page] == ["b"]


class TestNextCursor:
    def test_full_page_yields_cursor_at_last_item(self, make_message) -> None:
        page = [make_message("b", internal_date=2), make_message("a", internal_date=1)]
        assert next_cursor(page, 2) == PaginationCursor("a", 1, 2, "gmail")

    def test_short_page_is_last(self, make_message) -> None:
        assert next_cursor([make_message()], 2) is None

    def test_empty_page_is_last(self) -> None:
        assert next_cursor([], 5) is None

"""Tests for response normalization and the HTTP fetcher."""

import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from gallery_feed.feed import (
    AuthRequiredError,
    FeedFilter,
    FetchError,
    FilterState,
    HTTPContentFetcher,
    extract_images,
    parse_page,
    resolve_has_more,
)


class TestResolveHasMore:
    """hasMore is read from a fixed priority of locations."""

    def test_top_level_wins_over_data(self):
        payload = {"hasMore": False, "data": {"hasMore": True}}
        assert resolve_has_more(payload, first_page=False) is False
        assert resolve_has_more(payload, first_page=True) is False

    def test_data_wins_over_pagination(self):
        payload = {"data": {"hasMore": False}, "pagination": {"hasMore": True}}
        assert resolve_has_more(payload, first_page=True) is False

    def test_pagination_only(self):
        assert resolve_has_more({"pagination": {"hasMore": True}}, first_page=False) is True

    def test_default_is_optimistic_on_first_page(self):
        assert resolve_has_more({"images": []}, first_page=True) is True

    def test_default_is_conservative_on_later_pages(self):
        assert resolve_has_more({"images": []}, first_page=False) is False

    def test_null_falls_through(self):
        payload = {"hasMore": None, "pagination": {"hasMore": True}}
        assert resolve_has_more(payload, first_page=False) is True

    def test_non_mapping_containers_ignored(self):
        payload = {"data": [1, 2], "pagination": "yes"}
        assert resolve_has_more(payload, first_page=False) is False

    def test_non_mapping_payload(self):
        assert resolve_has_more(None, first_page=True) is True
        assert resolve_has_more([], first_page=False) is False


class TestExtractImages:

    def test_top_level_images(self):
        items, malformed = extract_images({"images": [{"id": 1}], "items": [{"id": 2}]})
        assert items == [{"id": 1}]
        assert not malformed

    def test_nested_data_items(self):
        items, malformed = extract_images({"data": {"items": [{"id": 3}]}})
        assert items == [{"id": 3}]
        assert not malformed

    def test_bare_items(self):
        items, _ = extract_images({"items": [{"id": 4}, "junk"]})
        assert items == [{"id": 4}]

    def test_missing_list_is_malformed(self):
        assert extract_images({"images": "nope"}) == ([], True)
        assert extract_images("<html>") == ([], True)


class TestParsePage:

    def test_skips_records_without_id(self):
        page = parse_page({"images": [{"id": 1, "isPublic": True}, {"prompt": "no id"}], "hasMore": True}, 0)

        assert [i.id for i in page.images] == ["1"]
        assert page.has_more is True
        assert not page.malformed

    def test_malformed_forces_no_more(self):
        page = parse_page({"hasMore": True}, 0)

        assert page.malformed
        assert page.images == []
        assert page.has_more is False


def _response(status_code=200, payload=None, json_error=False):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if json_error:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock()


def _fetcher(session, **kwargs):
    kwargs.setdefault("response_cache_seconds", 0)
    return HTTPContentFetcher(endpoint="https://gallery.test/api/feed", session=session, **kwargs)


class TestHTTPContentFetcher:

    def test_request_shape(self, session):
        session.get.return_value = _response(payload={"images": [], "hasMore": False})
        state = FilterState(auth_token="abc.def.ghi")
        fetcher = _fetcher(session, filter_state=state, page_size=8)

        asyncio.run(fetcher.fetch_page(FeedFilter.PRIVATE, 2, ["dogs", "cats"]))

        args, kwargs = session.get.call_args
        assert args == ("https://gallery.test/api/feed",)
        assert kwargs["params"] == {"filter": "private", "page": 2, "limit": 8, "tags": "cats,dogs"}
        assert kwargs["headers"] == {"Authorization": "Bearer abc.def.ghi"}
        assert kwargs["timeout"] == 15

    def test_tags_omitted_when_empty(self, session):
        session.get.return_value = _response(payload={"images": []})
        asyncio.run(_fetcher(session).fetch_page(FeedFilter.PUBLIC, 0))

        assert "tags" not in session.get.call_args.kwargs["params"]
        assert session.get.call_args.kwargs["headers"] == {}

    def test_parses_images(self, session):
        session.get.return_value = _response(payload={
            "images": [{"id": "a", "isPublic": True}, {"id": "b", "isPublic": True}],
            "pagination": {"hasMore": True},
        })

        page = asyncio.run(_fetcher(session).fetch_page(FeedFilter.PUBLIC, 1))

        assert [i.id for i in page.images] == ["a", "b"]
        assert page.has_more is True
        assert page.page == 1

    def test_server_error_raises(self, session):
        session.get.return_value = _response(status_code=502)

        with pytest.raises(FetchError) as excinfo:
            asyncio.run(_fetcher(session).fetch_page(FeedFilter.PUBLIC, 0))

        assert excinfo.value.status_code == 502

    def test_unauthorized_raises_auth_required(self, session):
        session.get.return_value = _response(status_code=401)

        with pytest.raises(AuthRequiredError):
            asyncio.run(_fetcher(session).fetch_page(FeedFilter.PRIVATE, 0))

    def test_network_error_raises(self, session):
        session.get.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(FetchError):
            asyncio.run(_fetcher(session).fetch_page(FeedFilter.PUBLIC, 0))

    def test_non_json_body_is_malformed(self, session):
        session.get.return_value = _response(json_error=True)

        page = asyncio.run(_fetcher(session).fetch_page(FeedFilter.PUBLIC, 0))

        assert page.malformed
        assert page.images == []
        assert page.has_more is False

    def test_negative_page_rejected(self, session):
        with pytest.raises(ValueError):
            _fetcher(session).build_params(FeedFilter.PUBLIC, -1)


class TestResponseMemo:
    """Identical requests inside the memo window reuse one response."""

    def test_repeat_request_served_from_memo(self, session):
        session.get.return_value = _response(payload={"images": [{"id": 1, "isPublic": True}]})
        fetcher = _fetcher(session, response_cache_seconds=60)

        async def twice():
            await fetcher.fetch_page(FeedFilter.PUBLIC, 0, ["a"])
            await fetcher.fetch_page(FeedFilter.PUBLIC, 0, ["a"])

        asyncio.run(twice())

        assert session.get.call_count == 1

    def test_clear_cache_forces_refetch(self, session):
        session.get.return_value = _response(payload={"images": []})
        fetcher = _fetcher(session, response_cache_seconds=60)

        async def run():
            await fetcher.fetch_page(FeedFilter.PUBLIC, 0)
            fetcher.clear_cache()
            await fetcher.fetch_page(FeedFilter.PUBLIC, 0)

        asyncio.run(run())

        assert session.get.call_count == 2

    def test_memo_is_per_caller(self, session):
        session.get.return_value = _response(payload={"images": []})
        state = FilterState(auth_token="alice")
        fetcher = _fetcher(session, filter_state=state, response_cache_seconds=60)

        async def run():
            await fetcher.fetch_page(FeedFilter.PRIVATE, 0)
            state.set_auth_token("bob")
            await fetcher.fetch_page(FeedFilter.PRIVATE, 0)

        asyncio.run(run())

        assert session.get.call_count == 2
        assert session.get.call_args.kwargs["headers"] == {"Authorization": "Bearer bob"}

    def test_disabled_memo(self, session):
        session.get.return_value = _response(payload={"images": []})
        fetcher = _fetcher(session, response_cache_seconds=0)

        async def run():
            await fetcher.fetch_page(FeedFilter.PUBLIC, 0)
            await fetcher.fetch_page(FeedFilter.PUBLIC, 0)

        asyncio.run(run())

        assert session.get.call_count == 2

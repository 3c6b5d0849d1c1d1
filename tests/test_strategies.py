"""
Unit tests for the List and View query strategies and feed option building.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from couchconfig.errors import QueryError
from couchconfig.feed import ChangeEvent, build_feed_options
from couchconfig.settings import SyncConfig
from couchconfig.strategies import (
    ListStrategy,
    ViewStrategy,
    inject_id,
    list_query_path,
    query_params,
    select_strategy,
)


def _config(**overrides):
    values = {
        "host": "couch.local",
        "port": 5984,
        "database_name": "sites",
        "query_path": "sites/all",
    }
    values.update(overrides)
    return SyncConfig(**values)


@pytest.fixture
def db():
    mock = MagicMock()
    mock.view = AsyncMock()
    mock.list = AsyncMock()
    return mock


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestListQueryPath:
    def test_inserts_list_as_second_segment(self):
        assert list_query_path("sites/all", "enabled") == "sites/enabled/all"

    def test_keeps_extra_segments(self):
        assert list_query_path("sites/other/all", "enabled") == "sites/enabled/other/all"


class TestQueryParams:
    def test_include_docs_only(self):
        assert query_params(_config()) == {"include_docs": True}

    def test_keys_added_as_list(self):
        assert query_params(_config(keys=("web", "api"))) == {
            "include_docs": True,
            "keys": ["web", "api"],
        }


class TestInjectId:
    def test_sets_id_from_native_id(self):
        assert inject_id({"_id": "a", "x": 1}) == {"_id": "a", "id": "a", "x": 1}

    def test_overwrites_existing_id(self):
        assert inject_id({"_id": "a", "id": "legacy"})["id"] == "a"


class TestSelectStrategy:
    def test_view_by_default(self):
        assert isinstance(select_strategy(_config()), ViewStrategy)

    def test_list_when_list_name_set(self):
        assert isinstance(select_strategy(_config(list_name="enabled")), ListStrategy)


# ---------------------------------------------------------------------------
# View strategy
# ---------------------------------------------------------------------------


class TestViewStrategy:
    @pytest.mark.asyncio
    async def test_every_document_gets_native_id(self, db):
        db.view.return_value = [
            {"id": "a", "key": None, "doc": {"_id": "a", "name": "alpha"}},
            {"id": "b", "key": None, "doc": {"_id": "b", "id": "wrong", "name": "beta"}},
            {"id": "c", "key": None, "doc": {"_id": "c", "id": "c"}},
        ]

        docs = await ViewStrategy().fetch(db, _config())

        assert [d["id"] for d in docs] == ["a", "b", "c"]
        assert [d["_id"] for d in docs] == ["a", "b", "c"]
        assert docs[1]["name"] == "beta"

    @pytest.mark.asyncio
    async def test_queries_configured_view(self, db):
        db.view.return_value = []
        await ViewStrategy().fetch(db, _config(keys=("web",)))
        db.view.assert_awaited_once_with(
            "sites/all", {"include_docs": True, "keys": ["web"]}
        )

    @pytest.mark.asyncio
    async def test_rows_without_doc_are_skipped(self, db):
        db.view.return_value = [
            {"key": "missing", "error": "not_found"},
            {"id": "a", "key": "web", "doc": {"_id": "a"}},
        ]
        docs = await ViewStrategy().fetch(db, _config(keys=("missing", "web")))
        assert docs == [{"_id": "a", "id": "a"}]

    @pytest.mark.asyncio
    async def test_error_propagates(self, db):
        failure = QueryError("Query sites/all failed with status 404", status=404)
        db.view.side_effect = failure
        with pytest.raises(QueryError) as excinfo:
            await ViewStrategy().fetch(db, _config())
        assert excinfo.value is failure


# ---------------------------------------------------------------------------
# List strategy
# ---------------------------------------------------------------------------


class TestListStrategy:
    @pytest.mark.asyncio
    async def test_rows_pass_through_unmodified(self, db):
        rows = [{"_id": "a", "name": "alpha"}, {"_id": "b", "id": "legacy"}]
        db.list.return_value = rows

        result = await ListStrategy().fetch(db, _config(list_name="enabled"))

        assert result is rows
        assert "id" not in rows[0]
        assert rows[1]["id"] == "legacy"

    @pytest.mark.asyncio
    async def test_queries_list_path(self, db):
        await ListStrategy().fetch(db, _config(list_name="enabled"))
        db.list.assert_awaited_once_with("sites/enabled/all", {"include_docs": True})
        db.view.assert_not_called()


# ---------------------------------------------------------------------------
# Feed helpers
# ---------------------------------------------------------------------------


class TestFeedOptions:
    def test_baseline(self):
        assert build_feed_options(_config()) == {"since": "now", "include_docs": True}

    def test_filter_and_keys(self):
        options = build_feed_options(_config(filter="sites/by_app", keys=("web",)))
        assert options["filter"] == "sites/by_app"
        assert json.loads(options["query_params"]["keys"]) == ["web"]


class TestChangeEvent:
    def test_from_record(self):
        event = ChangeEvent.from_record({"seq": "1", "doc": {"_id": "X", "field": 1}})
        assert event.document == {"_id": "X", "id": "X", "field": 1}

    def test_record_without_doc(self):
        assert ChangeEvent.from_record({"seq": "1", "id": "X", "deleted": True}) is None

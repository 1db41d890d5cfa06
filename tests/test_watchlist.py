"""Tests for the Supabase watchlist store."""

from unittest.mock import MagicMock, patch

from hub_engine.lib.supabase_client import upsert_row
from hub_engine.watchlist import WATCHLIST_TABLE, SupabaseWatchlistStore


class TestSupabaseWatchlistStore:
    def test_get(self):
        rows = [{"deal_id": "006a"}, {"deal_id": None}, {"deal_id": "006b"}]
        with patch("hub_engine.watchlist.query_table", return_value=rows) as mock_query:
            assert SupabaseWatchlistStore().get("005u") == ["006a", "006b"]
        assert mock_query.call_args.kwargs["filters"] == {"user_id": "005u"}

    def test_add_is_upsert(self):
        with patch("hub_engine.watchlist.upsert_row") as mock_upsert, \
             patch("hub_engine.watchlist.query_table", return_value=[{"deal_id": "006a"}]):
            result = SupabaseWatchlistStore().add("005u", "006a")
        assert result == ["006a"]
        table, row = mock_upsert.call_args.args
        assert table == WATCHLIST_TABLE
        assert (row["user_id"], row["deal_id"]) == ("005u", "006a")
        assert mock_upsert.call_args.kwargs["on_conflict"] == "user_id,deal_id"

    def test_re_adding_keeps_original_position(self):
        with patch("hub_engine.watchlist.upsert_row") as mock_upsert, \
             patch("hub_engine.watchlist.query_table", return_value=[{"deal_id": "006a"}, {"deal_id": "006b"}]):
            assert SupabaseWatchlistStore().add("005u", "006a") == ["006a", "006b"]
        # Existing rows are left alone so created_at ordering is stable
        assert mock_upsert.call_args.kwargs["ignore_duplicates"] is True

    def test_upsert_passes_ignore_duplicates_to_client(self):
        client = MagicMock()
        with patch("hub_engine.lib.supabase_client.get_client", return_value=client):
            upsert_row(WATCHLIST_TABLE, {"user_id": "005u", "deal_id": "006a"},
                       on_conflict="user_id,deal_id", ignore_duplicates=True)
        client.table.return_value.upsert.assert_called_once_with(
            {"user_id": "005u", "deal_id": "006a"}, on_conflict="user_id,deal_id", ignore_duplicates=True,
        )

    def test_remove(self):
        with patch("hub_engine.watchlist.delete_rows") as mock_delete, \
             patch("hub_engine.watchlist.query_table", return_value=[]):
            assert SupabaseWatchlistStore().remove("005u", "006a") == []
        mock_delete.assert_called_once_with(WATCHLIST_TABLE, {"user_id": "005u", "deal_id": "006a"})

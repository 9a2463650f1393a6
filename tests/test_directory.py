"""Tests for the conversation directory and user lookups."""

import httpx
import pytest

from hazardwatch.conversations import directory
from hazardwatch.core.errors import (
    AuthorizationError,
    InvalidArgument,
    NotFound,
    Unavailable,
)
from hazardwatch.users.directory import get_user_by_supabase_id, search_users

from fakes import FakeSupabase, server_error


class TestFindOrCreateConversation:
    def test_first_contact_creates_conversation_with_both_participants(self):
        db = FakeSupabase()

        conversation_id = directory.find_or_create_conversation(db, 7, 12)

        assert directory.participant_ids(db, conversation_id) == [7, 12]
        assert db.tables["direct_conversations"] == [
            {"conversation_id": conversation_id, "user1_id": 7, "user2_id": 12}
        ]

    def test_is_commutative_and_idempotent(self):
        db = FakeSupabase()

        first = directory.find_or_create_conversation(db, 7, 12)
        again = directory.find_or_create_conversation(db, 7, 12)
        reversed_pair = directory.find_or_create_conversation(db, 12, 7)

        assert first == again == reversed_pair
        assert len(db.tables["conversations"]) == 1

    def test_distinct_pairs_get_distinct_conversations(self):
        db = FakeSupabase()

        with_official = directory.find_or_create_conversation(db, 7, 12)
        with_scientist = directory.find_or_create_conversation(db, 7, 30)

        assert with_official != with_scientist
        assert directory.find_or_create_conversation(db, 30, 7) == with_scientist

    def test_lost_creation_race_resolves_to_winner(self):
        """A unique-pair violation is resolved by looking the winner up again."""
        db = FakeSupabase()
        winner = {}

        def concurrent_creator(name, params):
            # Another request creates the pair between our lookup and insert
            if not winner:
                winner["id"] = db.create_direct_conversation(12, 7)

        db.rpc_hooks.append(concurrent_creator)

        conversation_id = directory.find_or_create_conversation(db, 7, 12)

        assert conversation_id == winner["id"]
        assert db.conversations_between(7, 12) == [winner["id"]]

    def test_lowest_id_wins_when_duplicates_exist(self):
        db = FakeSupabase()
        first = db.create_direct_conversation(7, 12)
        # Legacy duplicate from before the pair constraint existed
        db.tables["direct_conversations"].clear()
        db.create_direct_conversation(7, 12)

        assert directory.find_conversation(db, 12, 7) == first

    def test_same_user_is_rejected(self):
        with pytest.raises(InvalidArgument):
            directory.find_or_create_conversation(FakeSupabase(), 7, 7)

    def test_unknown_recipient_is_not_found(self):
        db = FakeSupabase()

        with pytest.raises(NotFound, match="Recipient not found"):
            directory.find_or_create_conversation(db, 7, 999)

        assert db.tables["conversations"] == []

    def test_storage_failure_is_unavailable(self):
        db = FakeSupabase()
        db.fail_next("conversation_participants", server_error())

        with pytest.raises(Unavailable):
            directory.find_or_create_conversation(db, 7, 12)

    def test_transport_failure_is_unavailable(self):
        db = FakeSupabase()
        db.fail_next("create_direct_conversation", httpx.ConnectError("connection refused"))

        with pytest.raises(Unavailable):
            directory.find_or_create_conversation(db, 7, 12)

        # Nothing half-written; a retry succeeds
        assert db.tables["conversations"] == []
        assert directory.find_or_create_conversation(db, 7, 12) == 1


class TestParticipants:
    def test_ensure_participant(self):
        db = FakeSupabase()
        conversation_id = directory.find_or_create_conversation(db, 7, 12)

        directory.ensure_participant(db, conversation_id, 12)

        with pytest.raises(AuthorizationError):
            directory.ensure_participant(db, conversation_id, 30)

    def test_missing_conversation_is_not_found(self):
        with pytest.raises(NotFound, match="Conversation not found"):
            directory.ensure_participant(FakeSupabase(), 41, 7)

    def test_canonical_pair(self):
        assert directory.canonical_pair(12, 7) == (7, 12)
        assert directory.canonical_pair(7, 12) == (7, 12)


class TestListConversations:
    def test_inbox_orders_by_latest_activity(self):
        db = FakeSupabase()
        with_official = directory.find_or_create_conversation(db, 7, 12)
        with_scientist = directory.find_or_create_conversation(db, 7, 30)

        db.add_message(with_scientist, 30, "Sample results are in")
        db.add_message(with_official, 12, "Road closed at mile 4")
        db.add_message(with_official, 12, "Detour via Route 9")

        summaries = directory.list_conversations(db, 7)

        assert [s.id for s in summaries] == [with_official, with_scientist]
        assert summaries[0].other_user.username == "officer_chen"
        assert summaries[0].other_user.display_name == "Daniel Chen"
        assert summaries[0].last_message == "Detour via Route 9"
        assert summaries[0].unread_count == 2
        # No full name falls back to the username
        assert summaries[1].other_user.display_name == "scientist_okafor"

    def test_own_messages_are_not_unread(self):
        db = FakeSupabase()
        conversation_id = directory.find_or_create_conversation(db, 7, 12)
        db.add_message(conversation_id, 7, "Flooding on Elm St")

        [summary] = directory.list_conversations(db, 7)

        assert summary.unread_count == 0
        assert summary.last_message == "Flooding on Elm St"

    def test_conversation_without_messages_uses_creation_time(self):
        db = FakeSupabase()
        conversation_id = directory.find_or_create_conversation(db, 7, 12)

        [summary] = directory.list_conversations(db, 12)

        assert summary.last_message is None
        assert summary.last_message_at == db.tables["conversations"][0]["created_at"]
        assert summary.id == conversation_id

    def test_no_conversations(self):
        assert directory.list_conversations(FakeSupabase(), 7) == []

    def test_query_count_does_not_grow_with_inbox(self):
        db = FakeSupabase()
        with_official = directory.find_or_create_conversation(db, 7, 12)
        db.add_message(with_official, 12, "Levee inspection at noon")

        db.queries.clear()
        directory.list_conversations(db, 7)
        one_conversation = len(db.queries)

        with_scientist = directory.find_or_create_conversation(db, 7, 30)
        db.add_message(with_scientist, 30, "Water samples look clean")
        db.add_message(with_scientist, 7, "Thanks")

        db.queries.clear()
        summaries = directory.list_conversations(db, 7)

        assert len(summaries) == 2
        assert len(db.queries) == one_conversation
        assert ("messages", "select") not in db.queries


class TestUsers:
    def test_current_user_lookup(self):
        user = get_user_by_supabase_id(FakeSupabase(), "auth-user-12")

        assert user.id == 12
        assert user.role == "official"

    def test_unknown_auth_user(self):
        with pytest.raises(NotFound, match="User not found"):
            get_user_by_supabase_id(FakeSupabase(), "auth-user-404")

    def test_search_matches_name_username_and_email(self):
        db = FakeSupabase()

        assert [u.id for u in search_users(db, "chen")] == [12]
        assert [u.id for u in search_users(db, "LAB.example")] == [30]
        assert [u.id for u in search_users(db, "MARIA")] == [7]

    def test_search_orders_by_username(self):
        results = search_users(FakeSupabase(), "example.org")

        assert [u.username for u in results] == ["maria", "scientist_okafor"]

    @pytest.mark.parametrize("query", ["", " ", "m", "a,b", "x(y)"])
    def test_search_rejects_bad_queries(self, query):
        with pytest.raises(InvalidArgument):
            search_users(FakeSupabase(), query)

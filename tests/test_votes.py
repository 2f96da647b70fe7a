"""
Vote store, counter reconciler and toggle protocol tests.

Runs the synchronous components directly against the mongomock database.
"""

import pytest

from civic_connect.errors import InvalidInput, NotFound
from civic_connect.votes import (VoteTarget, apply_vote, get_vote, recount, remove_vote,
                                 remove_votes_for, upsert_vote, user_vote_map)


def stored_counts(db, grievance):
    g = db.grievances.find_one({"_id": grievance["_id"]})
    return g["upvotes"], g["downvotes"]


def vote_rows(db, target):
    return db.user_votes.count_documents(target.key)


# ═══════════════════════════════════════════════════════════════════════════════
# VOTE TARGET
# ═══════════════════════════════════════════════════════════════════════════════

class TestVoteTarget:
    def test_requires_a_target(self):
        with pytest.raises(InvalidInput):
            VoteTarget()

    def test_rejects_two_targets(self):
        with pytest.raises(InvalidInput):
            VoteTarget(grievance_id="g-1", comment_id="c-1")

    def test_key_holds_only_the_set_reference(self):
        assert VoteTarget.grievance("g-1").key == {"grievance_id": "g-1"}
        assert VoteTarget.comment("c-1").key == {"comment_id": "c-1"}


# ═══════════════════════════════════════════════════════════════════════════════
# VOTE STORE
# ═══════════════════════════════════════════════════════════════════════════════

class TestVoteStore:
    def test_upsert_then_get(self, db, citizen, make_grievance):
        target = VoteTarget.grievance(make_grievance(citizen)["_id"])
        upsert_vote(db, citizen["_id"], target, "up")
        assert get_vote(db, citizen["_id"], target)["kind"] == "up"

    def test_upsert_overwrites_kind_without_duplicating(self, db, citizen, make_grievance):
        target = VoteTarget.grievance(make_grievance(citizen)["_id"])
        upsert_vote(db, citizen["_id"], target, "up")
        upsert_vote(db, citizen["_id"], target, "down")
        assert vote_rows(db, target) == 1
        assert get_vote(db, citizen["_id"], target)["kind"] == "down"

    def test_racing_insert_becomes_update(self, db, citizen, make_grievance):
        """A row written by a concurrent request makes the insert fail on the
        unique index; the store must fall back to updating that row."""
        target = VoteTarget.grievance(make_grievance(citizen)["_id"])
        db.user_votes.insert_one({"_id": "concurrent", "user_id": citizen["_id"],
                                  **target.key, "kind": "down"})
        vote = upsert_vote(db, citizen["_id"], target, "up")
        assert vote["_id"] == "concurrent"
        assert vote["kind"] == "up"
        assert vote_rows(db, target) == 1

    def test_remove_absent_vote_is_noop(self, db, citizen, make_grievance):
        target = VoteTarget.grievance(make_grievance(citizen)["_id"])
        assert remove_vote(db, citizen["_id"], target) is False

    def test_remove_existing_vote(self, db, citizen, make_grievance):
        target = VoteTarget.grievance(make_grievance(citizen)["_id"])
        upsert_vote(db, citizen["_id"], target, "up")
        assert remove_vote(db, citizen["_id"], target) is True
        assert get_vote(db, citizen["_id"], target) is None

    def test_grievance_and_comment_votes_are_independent(self, db, citizen, make_grievance,
                                                         make_comment):
        grievance = make_grievance(citizen)
        comment = make_comment(citizen, grievance)
        g_target = VoteTarget.grievance(grievance["_id"])
        c_target = VoteTarget.comment(comment["_id"])
        upsert_vote(db, citizen["_id"], g_target, "down")
        upsert_vote(db, citizen["_id"], c_target, "up")
        assert get_vote(db, citizen["_id"], g_target)["kind"] == "down"
        assert get_vote(db, citizen["_id"], c_target)["kind"] == "up"
        assert db.user_votes.count_documents({"user_id": citizen["_id"]}) == 2

    def test_one_vote_per_user_per_comment(self, db, citizen, other_citizen, make_grievance,
                                           make_comment):
        grievance = make_grievance(citizen)
        first = VoteTarget.comment(make_comment(citizen, grievance)["_id"])
        second = VoteTarget.comment(make_comment(citizen, grievance, "Another one")["_id"])
        for target in (first, second):
            upsert_vote(db, citizen["_id"], target, "up")
            upsert_vote(db, citizen["_id"], target, "up")
            upsert_vote(db, other_citizen["_id"], target, "up")
        assert db.user_votes.count_documents({}) == 4

    def test_remove_votes_for_target(self, db, citizen, other_citizen, make_grievance):
        target = VoteTarget.grievance(make_grievance(citizen)["_id"])
        upsert_vote(db, citizen["_id"], target, "up")
        upsert_vote(db, other_citizen["_id"], target, "down")
        assert remove_votes_for(db, target) == 2
        assert vote_rows(db, target) == 0


# ═══════════════════════════════════════════════════════════════════════════════
# COUNTER RECONCILER
# ═══════════════════════════════════════════════════════════════════════════════

class TestRecount:
    def test_recount_matches_vote_rows(self, db, citizen, other_citizen, make_user,
                                       make_grievance):
        grievance = make_grievance(citizen, upvotes=42, downvotes=7)
        target = VoteTarget.grievance(grievance["_id"])
        third = make_user("citizen3")
        upsert_vote(db, citizen["_id"], target, "up")
        upsert_vote(db, other_citizen["_id"], target, "up")
        upsert_vote(db, third["_id"], target, "down")
        assert recount(db, target) == {"upvotes": 2, "downvotes": 1}
        assert stored_counts(db, grievance) == (2, 1)

    def test_recount_is_idempotent(self, db, citizen, make_grievance):
        grievance = make_grievance(citizen)
        target = VoteTarget.grievance(grievance["_id"])
        upsert_vote(db, citizen["_id"], target, "down")
        recount(db, target)
        first = stored_counts(db, grievance)
        recount(db, target)
        assert stored_counts(db, grievance) == first == (0, 1)

    def test_comment_recount_tracks_upvotes_only(self, db, citizen, make_grievance,
                                                 make_comment):
        comment = make_comment(citizen, make_grievance(citizen))
        target = VoteTarget.comment(comment["_id"])
        upsert_vote(db, citizen["_id"], target, "up")
        assert recount(db, target) == {"upvotes": 1}
        stored = db.comments.find_one({"_id": comment["_id"]})
        assert stored["upvotes"] == 1
        assert "downvotes" not in stored


# ═══════════════════════════════════════════════════════════════════════════════
# TOGGLE PROTOCOL
# ═══════════════════════════════════════════════════════════════════════════════

class TestToggleProtocol:
    def test_first_click_casts_vote(self, db, citizen, make_grievance):
        grievance = make_grievance(citizen)
        outcome = apply_vote(db, citizen["_id"], VoteTarget.grievance(grievance["_id"]), "up")
        assert outcome == (1, 0, "up")
        assert stored_counts(db, grievance) == (1, 0)

    def test_same_click_twice_removes_vote(self, db, citizen, make_grievance):
        target = VoteTarget.grievance(make_grievance(citizen)["_id"])
        apply_vote(db, citizen["_id"], target, "up")
        outcome = apply_vote(db, citizen["_id"], target, "up")
        assert outcome == (0, 0, None)
        assert get_vote(db, citizen["_id"], target) is None

    def test_opposite_click_flips_vote(self, db, citizen, make_grievance):
        grievance = make_grievance(citizen)
        target = VoteTarget.grievance(grievance["_id"])
        apply_vote(db, citizen["_id"], target, "up")
        outcome = apply_vote(db, citizen["_id"], target, "down")
        assert outcome == (0, 1, "down")
        assert vote_rows(db, target) == 1
        assert stored_counts(db, grievance) == (0, 1)

    def test_counters_follow_many_voters(self, db, citizen, other_citizen, make_user,
                                         make_grievance):
        grievance = make_grievance(citizen)
        target = VoteTarget.grievance(grievance["_id"])
        third = make_user("citizen3")
        apply_vote(db, citizen["_id"], target, "up")
        apply_vote(db, other_citizen["_id"], target, "down")
        apply_vote(db, third["_id"], target, "up")
        apply_vote(db, other_citizen["_id"], target, "up")
        apply_vote(db, citizen["_id"], target, "up")
        ups = db.user_votes.count_documents({**target.key, "kind": "up"})
        downs = db.user_votes.count_documents({**target.key, "kind": "down"})
        assert stored_counts(db, grievance) == (ups, downs) == (2, 0)

    def test_comment_upvote_toggles(self, db, citizen, make_grievance, make_comment):
        comment = make_comment(citizen, make_grievance(citizen))
        target = VoteTarget.comment(comment["_id"])
        assert apply_vote(db, citizen["_id"], target, "up") == (1, 0, "up")
        assert apply_vote(db, citizen["_id"], target, "up") == (0, 0, None)

    def test_comment_downvote_rejected(self, db, citizen, make_grievance, make_comment):
        comment = make_comment(citizen, make_grievance(citizen))
        with pytest.raises(InvalidInput):
            apply_vote(db, citizen["_id"], VoteTarget.comment(comment["_id"]), "down")
        assert db.user_votes.count_documents({}) == 0

    def test_missing_grievance(self, db, citizen):
        with pytest.raises(NotFound):
            apply_vote(db, citizen["_id"], VoteTarget.grievance("missing"), "up")

    def test_invalid_kind(self, db, citizen, make_grievance):
        target = VoteTarget.grievance(make_grievance(citizen)["_id"])
        with pytest.raises(InvalidInput, match="sideways"):
            apply_vote(db, citizen["_id"], target, "sideways")
        with pytest.raises(InvalidInput):
            upsert_vote(db, citizen["_id"], target, "sideways")
        assert vote_rows(db, target) == 0


class TestUserVoteMap:
    def test_maps_only_callers_votes(self, db, citizen, other_citizen, make_grievance,
                                     make_comment):
        first = make_grievance(citizen)
        second = make_grievance(citizen, title="Broken streetlight")
        comment = make_comment(citizen, first)
        apply_vote(db, citizen["_id"], VoteTarget.grievance(first["_id"]), "down")
        apply_vote(db, other_citizen["_id"], VoteTarget.grievance(second["_id"]), "up")
        apply_vote(db, citizen["_id"], VoteTarget.comment(comment["_id"]), "up")
        votes = user_vote_map(db, citizen["_id"], grievance_ids=[first["_id"], second["_id"]],
                              comment_ids=[comment["_id"]])
        assert votes == {first["_id"]: "down", comment["_id"]: "up"}

    def test_no_targets(self, db, citizen):
        assert user_vote_map(db, citizen["_id"]) == {}

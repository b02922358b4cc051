# tests/test_referral_tree.py
"""
Tests for the sponsor forest and its closure table.

    members.sponsor_id          -> direct sponsor
    referral_network            -> (ancestor, descendant, depth), self row at depth 0

Run:
    pytest tests/test_referral_tree.py -v
"""
import pytest

from extensions import db
from models import Member, ReferralNetwork
from mlm.exceptions import BusinessRuleViolation, ValidationError, NotFoundError
from mlm.referral_tree import ReferralTreeHelper

from conftest import register


def _depth_of(node, target_id, depth=0):
    if node["id"] == target_id:
        return depth
    for child in node["children"]:
        found = _depth_of(child, target_id, depth + 1)
        if found is not None:
            return found
    return None


# =============================================================================
# TEST CLASS: closure rows on registration
# =============================================================================

class TestNetworkRegistration:

    def test_self_row_for_root_member(self, ctx):
        """
        TEST: A member without a sponsor still gets its depth-0 row.
        """
        member = register("Solo")

        rows = ReferralNetwork.query.filter_by(descendant_id=member.id).all()

        assert [(r.ancestor_id, r.depth) for r in rows] == [(member.id, 0)]

    def test_chain_counts(self, chain):
        """
        TEST: Seven-member chain.

        Verify: root sees six descendants, one of them direct.
        """
        root, deepest = chain[0], chain[-1]

        assert ReferralTreeHelper.count_total_downline(root.id) == 6
        assert ReferralTreeHelper.count_direct_downline(root.id) == 1
        assert ReferralTreeHelper.count_total_downline(deepest.id) == 0

    def test_upline_closest_first(self, chain):
        """
        TEST: get_upline returns (level, member) with level 1 = direct sponsor.
        """
        upline = ReferralTreeHelper.get_upline(chain[-1].id, 3)

        assert [(level, member.id) for level, member in upline] == [
            (1, chain[-2].id),
            (2, chain[-3].id),
            (3, chain[-4].id),
        ]

    def test_upline_of_root_is_empty(self, chain):
        assert ReferralTreeHelper.get_upline(chain[0].id, 5) == []

    def test_descendant_ids_respect_depth(self, chain):
        ids = ReferralTreeHelper.get_descendant_ids(chain[0].id, max_depth=2)

        assert sorted(ids) == sorted([chain[1].id, chain[2].id])


# =============================================================================
# TEST CLASS: tree reads
# =============================================================================

class TestDownlineTree:

    def test_tree_depth_is_capped(self, chain):
        """
        TEST: Requesting 10 levels returns at most 5 below the root.
        """
        tree = ReferralTreeHelper.get_downline_tree(chain[0].id, 10)

        assert tree["id"] == chain[0].id
        assert _depth_of(tree, chain[5].id) == 5
        assert _depth_of(tree, chain[6].id) is None

    def test_tree_node_shape(self, chain):
        tree = ReferralTreeHelper.get_downline_tree(chain[0].id, 2)

        assert tree["directDownlineCount"] == 1
        assert tree["totalSales"] == 0.0
        assert len(tree["children"]) == 1
        assert tree["children"][0]["id"] == chain[1].id
        assert tree["children"][0]["children"][0]["children"] == []

    def test_tree_for_unknown_member(self, ctx):
        assert ReferralTreeHelper.get_downline_tree(9999) is None

    def test_network_summary_levels(self, chain):
        """
        TEST: Per-depth breakdown of the root's downline.
        """
        summary = ReferralTreeHelper.get_network_summary(chain[0].id)

        assert summary["totalDownline"] == 6
        assert summary["directDownline"] == 1
        assert summary["maxDepth"] == 6
        assert summary["levels"] == {1: 1, 2: 1, 3: 1, 4: 1, 5: 1, 6: 1}


# =============================================================================
# TEST CLASS: sponsor assignment
# =============================================================================

class TestSponsorAssignment:

    def test_self_sponsorship_rejected(self, chain):
        with pytest.raises(ValidationError):
            ReferralTreeHelper.assign_sponsor(chain[0].id, chain[0].id)

    def test_cycle_rejected(self, chain):
        """
        TEST: Root cannot be placed under its own descendant.

        Verify: BusinessRuleViolation, sponsor pointer unchanged.
        """
        root_id = chain[0].id

        with pytest.raises(BusinessRuleViolation):
            ReferralTreeHelper.assign_sponsor(root_id, chain[-1].id)
        db.session.rollback()

        assert db.session.get(Member, root_id).sponsor_id is None

    def test_unknown_sponsor(self, chain):
        with pytest.raises(NotFoundError):
            ReferralTreeHelper.assign_sponsor(chain[1].id, 9999)

    def test_move_subtree(self, chain):
        """
        TEST: Re-parent Dana (and her three descendants) under a new root.

        Verify: both trees' counts and Gita's upline reflect the move.
        """
        new_root = register("Rafael")
        dana = chain[3]

        ReferralTreeHelper.assign_sponsor(dana.id, new_root.id)
        db.session.commit()

        assert db.session.get(Member, dana.id).sponsor_id == new_root.id
        assert ReferralTreeHelper.count_total_downline(new_root.id) == 4
        assert ReferralTreeHelper.count_total_downline(chain[0].id) == 2

        upline = ReferralTreeHelper.get_upline(chain[-1].id, 5)
        assert [member.id for _, member in upline] == [chain[5].id, chain[4].id, dana.id, new_root.id]

    def test_detach_to_root(self, chain):
        ReferralTreeHelper.assign_sponsor(chain[3].id, None)
        db.session.commit()

        assert ReferralTreeHelper.count_total_downline(chain[0].id) == 2
        assert ReferralTreeHelper.get_upline(chain[3].id, 5) == []


# =============================================================================
# TEST CLASS: rebuild from sponsor pointers
# =============================================================================

class TestRebuildNetwork:

    def test_rebuild_matches_incremental_rows(self, chain):
        """
        TEST: Rebuilding a 7-member chain produces 1 + 2 + ... + 7 = 28 rows.
        """
        result = ReferralTreeHelper.rebuild_network()
        db.session.commit()

        assert result == {"members": 7, "rows": 28, "cycles": []}
        assert ReferralTreeHelper.count_total_downline(chain[0].id) == 6

    def test_rebuild_detaches_cycles(self, chain):
        """
        TEST: A sponsor loop written straight to the table is reported.

        Verify: every member in the loop keeps only its self row.
        """
        root = db.session.get(Member, chain[0].id)
        root.sponsor_id = chain[-1].id
        db.session.commit()

        result = ReferralTreeHelper.rebuild_network()
        db.session.commit()

        assert result["cycles"] == sorted(m.id for m in chain)
        assert result["rows"] == 7
        assert ReferralTreeHelper.count_total_downline(chain[0].id) == 0

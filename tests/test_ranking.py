"""
Tests for rank table operations: reorder, removal and repair.
"""

import pytest

import ranking
from errors import NotFound
from records import MembershipRow


def _ladder(*ranks, ladder_id=1):
    return [
        MembershipRow(id=i, ladder_id=ladder_id, player_id=100 + i, rank=rank)
        for i, rank in enumerate(ranks, start=1)
    ]


def _ids(memberships):
    return [m.id for m in memberships]


def test_reorder_always_yields_a_permutation():
    """Any target and any requested rank leaves ranks 1..N"""
    memberships = _ladder(1, 2, 3, 4, 5)
    for target in range(1, 6):
        for new_rank in range(-1, 9):
            result = ranking.reorder(1, memberships, target, new_rank)
            assert sorted(m.rank for m in result) == [1, 2, 3, 4, 5]
            assert sorted(_ids(result)) == [1, 2, 3, 4, 5]


def test_reorder_moves_bottom_member_to_top():
    """Everyone between the old and new rank shifts down one"""
    result = ranking.reorder(1, _ladder(1, 2, 3, 4, 5), 5, 1)
    assert _ids(result) == [5, 1, 2, 3, 4]
    assert [m.rank for m in result] == [1, 2, 3, 4, 5]


def test_reorder_is_idempotent():
    """Reapplying the same move changes nothing"""
    first = ranking.reorder(1, _ladder(1, 2, 3, 4), 1, 3)
    second = ranking.reorder(1, first, 1, 3)
    assert [(m.id, m.rank) for m in first] == [(m.id, m.rank) for m in second]
    assert ranking.changed_ranks(first, second) == []


def test_reorder_clamps_out_of_range_ranks():
    """Ranks below 1 go to the top, ranks past the end append"""
    memberships = _ladder(1, 2, 3)
    assert _ids(ranking.reorder(1, memberships, 3, 0)) == [3, 1, 2]
    assert _ids(ranking.reorder(1, memberships, 1, 99)) == [2, 3, 1]


def test_reorder_closes_gaps():
    """A ladder with gaps comes back renumbered"""
    memberships = _ladder(1, 4, 9)
    result = ranking.reorder(1, memberships, 2, 2)
    assert [(m.id, m.rank) for m in result] == [(1, 1), (2, 2), (3, 3)]


def test_reorder_single_member():
    result = ranking.reorder(1, _ladder(1), 1, 5)
    assert [(m.id, m.rank) for m in result] == [(1, 1)]


def test_reorder_unknown_membership():
    with pytest.raises(NotFound):
        ranking.reorder(1, _ladder(1, 2), 42, 1)


def test_reorder_ignores_other_ladders():
    memberships = _ladder(1, 2) + _ladder(1, ladder_id=2)
    with pytest.raises(NotFound):
        ranking.reorder(2, memberships[:2], 1, 1)


def test_changed_ranks_lists_only_moved_rows():
    before = _ladder(1, 2, 3, 4)
    after = ranking.reorder(1, before, 3, 2)
    assert ranking.changed_ranks(before, after) == [(3, 2), (2, 3)]


def test_remove_member_closes_gap():
    result = ranking.remove_member(_ladder(1, 2, 3, 4), 2)
    assert [(m.id, m.rank) for m in result] == [(1, 1), (3, 2), (4, 3)]


def test_remove_last_member_leaves_empty_ladder():
    assert ranking.remove_member(_ladder(1), 1) == []


def test_remove_unknown_member():
    with pytest.raises(NotFound):
        ranking.remove_member(_ladder(1, 2), 7)


def test_next_rank_is_bottom():
    assert ranking.next_rank([]) == 1
    assert ranking.next_rank(_ladder(1, 2, 3)) == 4


def test_is_permutation():
    assert ranking.is_permutation(_ladder(2, 1, 3))
    assert ranking.is_permutation([])
    assert not ranking.is_permutation(_ladder(1, 1, 3))
    assert not ranking.is_permutation(_ladder(1, None))
    assert not ranking.is_permutation(_ladder(1, 3))


def test_reconcile_keeps_order_and_breaks_ties_by_id():
    """Duplicates are ordered by membership id, unranked rows go last"""
    memberships = _ladder(2, 2, None, 5)
    result = ranking.reconcile(memberships)
    assert [(m.id, m.rank) for m in result] == [(1, 1), (2, 2), (4, 3), (3, 4)]


def test_swap_ranks():
    result = ranking.swap_ranks(_ladder(1, 2, 3), 3, 1)
    assert [(m.id, m.rank) for m in result] == [(3, 1), (2, 2), (1, 3)]


def test_swap_ranks_requires_both_members():
    with pytest.raises(NotFound):
        ranking.swap_ranks(_ladder(1, 2), 1, 9)

"""
Rank table for a single ladder.

Ranks in a ladder are a permutation of 1..N. Every function here is pure:
it takes MembershipRow records and returns new ones. Persisting the
changed ranks is the caller's job (see ladder_store.reorder_ladder).
"""

from errors import NotFound


def ordered(memberships):
    """Memberships by rank; rows without a rank go last, by membership id"""
    return sorted(
        memberships,
        key=lambda m: (m.rank is None, m.rank if m.rank is not None else 0, m.id or 0),
    )


def renumber(memberships):
    """Assign ranks 1..N in the given order"""
    return [m.with_rank(position) for position, m in enumerate(memberships, start=1)]


def reorder(ladder_id, memberships, target_membership_id, new_rank):
    """
    Move one membership to new_rank and renumber the ladder.

    - The target is taken out of the rank order
    - new_rank is clamped to 1..N (N = ladder size), so anything above the
      bottom appends at the end
    - Everyone is renumbered 1..N, which closes any gap

    Args:
        ladder_id: Ladder the memberships belong to (rows of other ladders are ignored)
        memberships: All membership rows of the ladder
        target_membership_id: Membership to move
        new_rank: Requested rank (1-indexed)

    Returns:
        New list of MembershipRow in rank order
    """
    current = [m for m in memberships if m.ladder_id in (ladder_id, None)]
    target = next((m for m in current if m.id == target_membership_id), None)
    if target is None:
        raise NotFound(f"Membership {target_membership_id} is not on ladder {ladder_id}")

    without = [m for m in ordered(current) if m.id != target_membership_id]
    index = max(0, min(int(new_rank) - 1, len(without)))
    without.insert(index, target)
    return renumber(without)


def changed_ranks(before, after):
    """(membership_id, rank) pairs whose rank differs between two snapshots"""
    old = {m.id: m.rank for m in before}
    return [(m.id, m.rank) for m in after if old.get(m.id) != m.rank]


def remove_member(memberships, membership_id):
    """Drop one membership and close the gap it leaves"""
    remaining = [m for m in ordered(memberships) if m.id != membership_id]
    if len(remaining) == len(memberships):
        raise NotFound(f"Membership {membership_id} not found")
    return renumber(remaining)


def next_rank(memberships):
    """Rank for a new member: the bottom of a ladder whose ranks are 1..N"""
    return len(memberships) + 1


def is_permutation(memberships):
    ranks = [m.rank for m in memberships]
    return sorted(ranks, key=lambda r: (r is None, r or 0)) == list(range(1, len(ranks) + 1))


def reconcile(memberships):
    """
    Repair a ladder whose ranks are not 1..N (duplicates, gaps, missing ranks
    after an interrupted write). Current order is kept; ties are broken by
    membership id and unranked rows go to the bottom.
    """
    return renumber(ordered(memberships))


def swap_ranks(memberships, first_id, second_id):
    """Exchange the ranks of two memberships"""
    by_id = {m.id: m for m in memberships}
    if first_id not in by_id or second_id not in by_id:
        raise NotFound("Both memberships must be on the ladder to swap ranks")
    first_rank = by_id[first_id].rank
    second_rank = by_id[second_id].rank
    swapped = []
    for m in memberships:
        if m.id == first_id:
            swapped.append(m.with_rank(second_rank))
        elif m.id == second_id:
            swapped.append(m.with_rank(first_rank))
        else:
            swapped.append(m)
    return ordered(swapped)

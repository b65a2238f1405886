"""
Ladder Rank Repair Script
Finds ladders whose ranks are not 1..N (duplicates, gaps, missing ranks left
by an interrupted write) and renumbers them, keeping the current order.

Usage: python repair_ladder_ranks.py [ladder_id ...]
"""

import sys

from dotenv import load_dotenv

load_dotenv()

from app import app
from errors import InconsistentMembership
from ladder_store import load_memberships, repair_ladder_ranks, resolve_ladder
from models import Ladder
import ranking


def repair_ladders(ladder_ids=None):
    """Repair the given ladders (all ladders when none are given)"""
    with app.app_context():
        ladders = Ladder.query.order_by(Ladder.id).all()
        if ladder_ids:
            ladders = [l for l in ladders if l.id in ladder_ids]

        repaired = 0
        for ladder in ladders:
            memberships = load_memberships(ladder.id)
            print(f"\n=== Ladder {ladder.id}: {ladder.name} ({len(memberships)} memberships) ===")

            try:
                resolve_ladder(ladder.id, strict=True)
            except InconsistentMembership as e:
                print(f"  ⚠️  {e.message}")
                continue

            if ranking.is_permutation(memberships):
                print("  Ranks OK")
                continue

            print("BEFORE REPAIR:")
            for m in ranking.ordered(memberships):
                print(f"  Membership {m.id}: player {m.player_id} rank {m.rank}")

            changes = repair_ladder_ranks(ladder.id)
            repaired += 1

            print("AFTER REPAIR:")
            for membership_id, rank in changes:
                print(f"  Membership {membership_id} -> rank {rank}")

        print(f"\n✅ {repaired} ladder(s) repaired")
        return repaired


if __name__ == "__main__":
    repair_ladders([int(arg) for arg in sys.argv[1:]])

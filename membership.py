"""
Membership resolver: turns a ladder's membership rows into the lookup maps
used for rankings, match pages and notifications.

In a doubles membership the primary player_id is the ranking key. The
partner mirrors the primary's rank, avatar and membership id and points
back to the primary, so a partner is never its own ranking unit.
"""

import logging
from dataclasses import dataclass, field

from errors import InconsistentMembership
from records import MembershipRow, DOUBLES

logger = logging.getLogger(__name__)


@dataclass
class ResolvedMembership:
    rank_by_player: dict = field(default_factory=dict)
    partner_by_player: dict = field(default_factory=dict)
    primary_by_player: dict = field(default_factory=dict)
    team_avatar_by_player: dict = field(default_factory=dict)
    membership_id_by_player: dict = field(default_factory=dict)
    player_ids: set = field(default_factory=set)
    from_fallback: bool = False

    @property
    def is_empty(self):
        return not self.player_ids

    def primary_of(self, player_id):
        return self.primary_by_player.get(player_id, player_id)

    def team_of(self, primary_id):
        """Primary plus partner (if any) for a ranking unit"""
        partner_id = self.partner_by_player.get(primary_id)
        if partner_id is not None and self.primary_by_player.get(partner_id) == primary_id:
            return [primary_id, partner_id]
        return [primary_id]


def _usable(row):
    return row is not None and row.player_id is not None


def resolve(membership_rows, fallback_player_ids=None, ladder_id=None, strict=False):
    """
    Build player lookup maps for one ladder.

    Order of preference:
    1. Direct membership rows; if at least one has a player_id they are used exclusively
    2. Otherwise rank-less synthetic rows built from fallback_player_ids (ids found
       through the member-id procedure, match rows and the rank history log)
    3. Otherwise empty maps; the condition is logged, or raised when strict=True

    Args:
        membership_rows: MembershipRow records from the direct query
        fallback_player_ids: Iterable of player ids from the fallback sources
        ladder_id: Only used in log messages
        strict: Raise InconsistentMembership instead of returning empty maps

    Returns:
        ResolvedMembership
    """
    rows = [r for r in membership_rows or [] if _usable(r)]
    resolved = ResolvedMembership()

    if not rows:
        fallback_ids = sorted({pid for pid in fallback_player_ids or [] if pid is not None})
        if not fallback_ids:
            if strict:
                raise InconsistentMembership(ladder_id)
            logger.warning(
                "[MEMBERSHIP] Ladder %s: no membership rows and no fallback data, showing no players",
                ladder_id,
            )
            return resolved
        logger.info(
            "[MEMBERSHIP] Ladder %s: membership query returned no rows, using %d fallback player ids",
            ladder_id,
            len(fallback_ids),
        )
        rows = [MembershipRow(id=None, ladder_id=ladder_id, player_id=pid) for pid in fallback_ids]
        resolved.from_fallback = True

    for row in rows:
        player_id = row.player_id
        partner_id = row.partner_id

        resolved.player_ids.add(player_id)
        if row.rank is not None:
            resolved.rank_by_player[player_id] = row.rank
        if row.team_avatar_url:
            resolved.team_avatar_by_player[player_id] = row.team_avatar_url
        if row.id is not None:
            resolved.membership_id_by_player[player_id] = row.id
        resolved.partner_by_player[player_id] = partner_id
        resolved.primary_by_player[player_id] = player_id

        if partner_id is not None:
            resolved.player_ids.add(partner_id)
            resolved.partner_by_player[partner_id] = player_id
            resolved.primary_by_player[partner_id] = player_id
            if row.rank is not None and partner_id not in resolved.rank_by_player:
                resolved.rank_by_player[partner_id] = row.rank
            if row.team_avatar_url:
                resolved.team_avatar_by_player[partner_id] = row.team_avatar_url
            if row.id is not None:
                resolved.membership_id_by_player[partner_id] = row.id

    return resolved


def team_name(primary_id, ladder_type, partner_by_player, name_by_player):
    """'Primary & Partner' on doubles ladders, the player's own name otherwise"""
    primary_name = name_by_player.get(primary_id) or "Player"
    if ladder_type == DOUBLES:
        partner_id = partner_by_player.get(primary_id)
        if partner_id is not None and name_by_player.get(partner_id):
            return f"{primary_name} & {name_by_player[partner_id]}"
    return primary_name


def display_name(player_id, ladder_type, resolved, name_by_player):
    """Team name for any member of a team, primary listed first"""
    return team_name(resolved.primary_of(player_id), ladder_type, resolved.partner_by_player, name_by_player)


def ranking_rows(membership_rows, players_by_id, ladder_type):
    """
    Rows for the ladder ranking table, best rank first.

    Wins and losses are summed over both team members on doubles ladders.
    """
    table = []
    for row in membership_rows:
        if row.player_id is None:
            continue
        player = players_by_id.get(row.player_id)
        partner = players_by_id.get(row.partner_id) if row.partner_id is not None else None
        player_name = player.name if player and player.name else "Player"
        if ladder_type == DOUBLES and row.partner_id is not None:
            partner_name = partner.name if partner and partner.name else "Player"
            name = f"{player_name} & {partner_name}"
            wins = (player.wins if player else 0) + (partner.wins if partner else 0)
            losses = (player.losses if player else 0) + (partner.losses if partner else 0)
        else:
            name = player_name
            wins = player.wins if player else 0
            losses = player.losses if player else 0
        table.append({
            "membership_id": row.id,
            "rank": row.rank,
            "player_id": row.player_id,
            "partner_id": row.partner_id,
            "display_name": name,
            "email": player.email if player and player.email else "",
            "team_avatar_url": row.team_avatar_url,
            "wins": wins,
            "losses": losses,
        })
    table.sort(key=lambda r: (r["rank"] is None, r["rank"] or 0, r["display_name"]))
    return table

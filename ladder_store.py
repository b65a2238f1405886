"""
Database glue for clubs, ladders, memberships and players.

Domain rules live in ranking.py and membership.py; functions here load rows,
hand them to those modules as records and write back the result in a single
transaction. Anything that rewrites ranks holds the ladder's lock.
"""

import logging
import secrets
import threading

from sqlalchemy import func, or_, text
from sqlalchemy.exc import SQLAlchemyError

import ranking
from errors import LadderError, Forbidden, NotFound, MembershipConflict, DuplicatePlayer
from membership import resolve, ranking_rows
from models import db, Player, Club, Ladder, LadderMembership, Match, LadderRankHistory
from records import (
    DOUBLES, LADDER_TYPES, MembershipRow, memberships_from_rows, ladder_from_row,
    player_from_row, actor_from_player,
)
from rounds import round_for
from utils import normalize_email, utcnow

logger = logging.getLogger(__name__)

MAX_MATCH_FREQUENCY = 4
HISTORY_LIMIT = 8

_UNSET = object()

_ladder_locks = {}
_ladder_locks_guard = threading.Lock()


def ladder_lock(ladder_id):
    """Process-wide lock serialising rank rewrites of one ladder"""
    with _ladder_locks_guard:
        lock = _ladder_locks.get(ladder_id)
        if lock is None:
            lock = _ladder_locks[ladder_id] = threading.RLock()
        return lock


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_player_by_token(token):
    player = Player.query.filter_by(access_token=token).first() if token else None
    if not player:
        raise NotFound("Invalid or expired access link")
    return player


def actor_for_token(token):
    """Actor for the player owning an access token"""
    return actor_from_player(get_player_by_token(token))


def get_player_by_email(email):
    email = normalize_email(email)
    if not email:
        return None
    return Player.query.filter(func.lower(Player.email) == email).first()


def get_player(player_id):
    player = db.session.get(Player, player_id)
    if not player:
        raise NotFound(f"Player {player_id} not found")
    return player


def get_club(club_id):
    club = db.session.get(Club, club_id)
    if not club:
        raise NotFound(f"Club {club_id} not found")
    return club


def get_ladder(ladder_id):
    ladder = db.session.get(Ladder, ladder_id)
    if not ladder:
        raise NotFound(f"Ladder {ladder_id} not found")
    return ladder


def get_membership(membership_id):
    membership = db.session.get(LadderMembership, membership_id)
    if not membership:
        raise NotFound(f"Membership {membership_id} not found")
    return membership


def ladder_info(ladder_id):
    return ladder_from_row(get_ladder(ladder_id))


def ladders_by_id(ladder_ids):
    ids = {i for i in ladder_ids if i is not None}
    if not ids:
        return {}
    return {l.id: ladder_from_row(l) for l in Ladder.query.filter(Ladder.id.in_(ids)).all()}


def ladders_for_club(club_id):
    return Ladder.query.filter_by(club_id=club_id).order_by(Ladder.name).all()


def players_by_id(player_ids):
    """player id -> PlayerInfo"""
    ids = {i for i in player_ids if i is not None}
    if not ids:
        return {}
    return {p.id: player_from_row(p) for p in Player.query.filter(Player.id.in_(ids)).all()}


def load_memberships(ladder_id):
    rows = LadderMembership.query.filter_by(ladder_id=ladder_id).all()
    return memberships_from_rows(rows)


def register_player(data, is_super_admin=False):
    """
    Create a player with a fresh access token. The token is the player's
    login: it goes into every link the app hands out (/my-matches/<token>).
    """
    name = (data.get("name") or "").strip()
    email = normalize_email(data.get("email"))
    if not name:
        raise LadderError("Name is required")
    if not email or "@" not in email:
        raise LadderError("A valid email address is required")
    if get_player_by_email(email):
        raise DuplicatePlayer("A player with this email is already registered")

    clubs = []
    if data.get("club_id") not in (None, ""):
        try:
            clubs.append(get_club(int(data["club_id"])).id)
        except (TypeError, ValueError):
            raise LadderError("'club_id' must be a whole number")

    player = Player(
        name=name,
        last_name=(data.get("last_name") or "").strip() or None,
        email=email,
        phone=(data.get("phone") or "").strip() or None,
        gender=data.get("gender") or None,
        clubs=clubs,
        is_super_admin=is_super_admin,
        access_token=secrets.token_urlsafe(32),
    )
    try:
        db.session.add(player)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("[PLAYER] Registered player %s", player.id)
    return player


# ---------------------------------------------------------------------------
# Clubs and ladders
# ---------------------------------------------------------------------------

CLUB_FIELDS = ("name", "city", "sport", "description", "address", "email", "phone", "website")


def create_club(actor, data):
    if not actor.is_super_admin:
        raise Forbidden("Only super admins can create clubs.")
    name = (data.get("name") or "").strip()
    if not name:
        raise LadderError("Club name is required")

    club = Club(**{f: (data.get(f) or None) for f in CLUB_FIELDS})
    club.name = name
    try:
        db.session.add(club)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("[CLUB] Created club %s (%s)", club.id, club.name)
    return club


def create_ladder(actor, club_id, data):
    get_club(club_id)
    if not actor.administers(club_id):
        raise Forbidden("Only admins of this club can create ladders.")
    name = (data.get("name") or "").strip()
    ladder_type = data.get("type") or "singles"
    if not name:
        raise LadderError("Ladder name is required")
    if ladder_type not in LADDER_TYPES:
        raise LadderError(f"Ladder type must be one of: {', '.join(LADDER_TYPES)}")

    try:
        warm_up_time = int(data.get("warm_up_time") or 10)
        play_time = int(data.get("play_time") or 60)
    except (TypeError, ValueError):
        raise LadderError("Warm-up and play time must be whole minutes")

    ladder = Ladder(
        club_id=club_id,
        name=name,
        type=ladder_type,
        warm_up_time=warm_up_time,
        play_time=play_time,
        swap_on_upset=bool(data.get("swap_on_upset", True)),
    )
    try:
        db.session.add(ladder)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("[LADDER] Created %s ladder %s (%s) in club %s", ladder_type, ladder.id, name, club_id)
    return ladder


# ---------------------------------------------------------------------------
# Rank writes
# ---------------------------------------------------------------------------

def stage_rank_changes(ladder_id, before, after, round_label=None):
    """
    Apply changed ranks to the session (no commit) and log one history row
    per change. Returns the (membership_id, rank) pairs written.
    """
    changes = ranking.changed_ranks(before, after)
    if not changes:
        return changes
    label = round_label or round_for(utcnow()).label
    by_id = {m.id: m for m in after}
    rows = {
        row.id: row
        for row in LadderMembership.query.filter(
            LadderMembership.id.in_([membership_id for membership_id, _ in changes])
        ).all()
    }
    for membership_id, new_rank in changes:
        row = rows.get(membership_id)
        if row is None:
            continue
        row.rank = new_rank
        row.updated_at = utcnow()
        record = by_id[membership_id]
        db.session.add(LadderRankHistory(
            ladder_id=ladder_id,
            membership_id=membership_id,
            player_id=record.player_id,
            partner_id=record.partner_id,
            round_label=label,
            rank=new_rank,
        ))
    return changes


def _require_member_or_admin(actor, membership, ladder):
    if actor.player_id in (membership.player_id, membership.partner_id):
        return
    if actor.administers(ladder.club_id):
        return
    raise Forbidden("Only the member or a club admin can change this membership.")


def _validate_frequency(value):
    try:
        frequency = int(value)
    except (TypeError, ValueError):
        raise LadderError("Match frequency must be a whole number")
    if frequency < 0 or frequency > MAX_MATCH_FREQUENCY:
        raise LadderError(f"Match frequency must be between 0 and {MAX_MATCH_FREQUENCY}")
    return frequency


def _validate_partner(ladder, player_id, partner_id, exclude_membership_id=None):
    if partner_id is None:
        return None
    if ladder.type != DOUBLES:
        raise LadderError("Partners can only be set on doubles ladders")
    if partner_id == player_id:
        raise LadderError("A player cannot partner themselves")
    partner = get_player(partner_id)
    if ladder.club_id not in (partner.clubs or []):
        raise LadderError("Partner must be a member of the same club")
    _check_not_in_ladder(ladder.id, [partner_id], exclude_membership_id)
    return partner_id


def _check_not_in_ladder(ladder_id, player_ids, exclude_membership_id=None):
    query = LadderMembership.query.filter(
        LadderMembership.ladder_id == ladder_id,
        or_(
            LadderMembership.player_id.in_(player_ids),
            LadderMembership.partner_id.in_(player_ids),
        ),
    )
    if exclude_membership_id is not None:
        query = query.filter(LadderMembership.id != exclude_membership_id)
    if query.first():
        raise MembershipConflict("Player is already on this ladder")


# ---------------------------------------------------------------------------
# Membership lifecycle
# ---------------------------------------------------------------------------

def join_ladder(actor, ladder_id, partner_id=None, match_frequency=1, player_id=None, team_avatar_url=None):
    """
    Add a player (or doubles team) to the bottom of a ladder.

    A player may join themselves; club admins may add any player. The
    player is added to the ladder's club if not already a member.
    """
    ladder = get_ladder(ladder_id)
    player_id = player_id or actor.player_id
    if player_id != actor.player_id and not actor.administers(ladder.club_id):
        raise Forbidden("Only club admins can add other players to a ladder.")
    player = get_player(player_id)

    frequency = _validate_frequency(match_frequency)
    _check_not_in_ladder(ladder_id, [player_id])
    partner_id = _validate_partner(ladder, player_id, partner_id)

    with ladder_lock(ladder_id):
        try:
            memberships = load_memberships(ladder_id)
            if not ranking.is_permutation(memberships):
                repaired = ranking.reconcile(memberships)
                stage_rank_changes(ladder_id, memberships, repaired)
                memberships = repaired

            clubs = list(player.clubs or [])
            if ladder.club_id not in clubs:
                player.clubs = clubs + [ladder.club_id]

            membership = LadderMembership(
                ladder_id=ladder_id,
                player_id=player_id,
                partner_id=partner_id,
                rank=ranking.next_rank(memberships),
                match_frequency=frequency,
                team_avatar_url=team_avatar_url,
            )
            db.session.add(membership)
            db.session.flush()
            db.session.add(LadderRankHistory(
                ladder_id=ladder_id,
                membership_id=membership.id,
                player_id=player_id,
                partner_id=partner_id,
                round_label=round_for(utcnow()).label,
                rank=membership.rank,
            ))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    logger.info("[MEMBERSHIP] Player %s joined ladder %s at rank %s", player_id, ladder_id, membership.rank)
    return membership


def update_membership(actor, membership_id, partner_id=_UNSET, match_frequency=_UNSET, team_avatar_url=_UNSET):
    membership = get_membership(membership_id)
    ladder = get_ladder(membership.ladder_id)
    _require_member_or_admin(actor, membership, ladder)

    if partner_id is not _UNSET:
        membership.partner_id = _validate_partner(ladder, membership.player_id, partner_id, membership.id)
    if match_frequency is not _UNSET:
        membership.match_frequency = _validate_frequency(match_frequency)
    if team_avatar_url is not _UNSET:
        membership.team_avatar_url = team_avatar_url or None

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return membership


def leave_ladder(actor, membership_id):
    """Remove a membership and close the gap it leaves, in one transaction"""
    membership = get_membership(membership_id)
    ladder = get_ladder(membership.ladder_id)
    _require_member_or_admin(actor, membership, ladder)

    with ladder_lock(ladder.id):
        try:
            _remove_membership(ladder.id, membership)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    logger.info("[MEMBERSHIP] Membership %s left ladder %s", membership_id, ladder.id)


def _remove_membership(ladder_id, membership):
    before = load_memberships(ladder_id)
    after = ranking.remove_member(before, membership.id)
    db.session.delete(membership)
    db.session.flush()
    stage_rank_changes(ladder_id, [m for m in before if m.id != membership.id], after)


def reorder_ladder(actor, ladder_id, membership_id, new_rank):
    """
    Admin move of one membership to new_rank (clamped to the ladder size).

    Returns:
        list of (membership_id, rank) pairs that changed
    """
    ladder = get_ladder(ladder_id)
    if not actor.administers(ladder.club_id):
        raise Forbidden("Only admins of this club can reorder the ladder.")
    try:
        new_rank = int(new_rank)
    except (TypeError, ValueError):
        raise LadderError("Rank must be a whole number")

    with ladder_lock(ladder_id):
        before = load_memberships(ladder_id)
        after = ranking.reorder(ladder_id, before, membership_id, new_rank)
        if not ranking.is_permutation(after):
            raise LadderError(f"Reorder of ladder {ladder_id} produced invalid ranks")
        try:
            changes = stage_rank_changes(ladder_id, before, after)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    logger.info(
        "[LADDER] Ladder %s: membership %s moved to rank %s (%d ranks changed)",
        ladder_id, membership_id, new_rank, len(changes),
    )
    return changes


def repair_ladder_ranks(ladder_id, actor=None):
    """
    Renumber a ladder whose ranks are not 1..N. Returns the changed pairs
    (empty when the ladder was already consistent).
    """
    ladder = get_ladder(ladder_id)
    if actor is not None and not actor.administers(ladder.club_id):
        raise Forbidden("Only admins of this club can repair the ladder.")

    with ladder_lock(ladder_id):
        before = load_memberships(ladder_id)
        if ranking.is_permutation(before):
            return []
        after = ranking.reconcile(before)
        try:
            changes = stage_rank_changes(ladder_id, before, after)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    logger.warning("[LADDER] Repaired ranks of ladder %s: %d memberships renumbered", ladder_id, len(changes))
    return changes


def delete_player(actor, player_id):
    """
    Delete a player with everything that references them: their memberships
    (closing the rank gap in each ladder), partner links and matches.
    """
    player = get_player(player_id)
    if actor.player_id != player_id and not (
        actor.is_super_admin or any(actor.administers(c) for c in (player.clubs or []))
    ):
        raise Forbidden("Only the player or an admin can delete this account.")

    try:
        for membership in LadderMembership.query.filter_by(player_id=player_id).all():
            with ladder_lock(membership.ladder_id):
                _remove_membership(membership.ladder_id, membership)
        for membership in LadderMembership.query.filter_by(partner_id=player_id).all():
            membership.partner_id = None
        Match.query.filter(
            or_(Match.challenger_id == player_id, Match.challenged_id == player_id)
        ).delete(synchronize_session=False)
        db.session.delete(player)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info("[PLAYER] Deleted player %s", player_id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def position_history(membership_id, limit=HISTORY_LIMIT):
    """
    Newest-first rank history of a team with the direction of each change
    relative to the next older entry.
    """
    membership = get_membership(membership_id)
    filters = [
        LadderRankHistory.membership_id == membership.id,
        LadderRankHistory.player_id == membership.player_id,
    ]
    if membership.partner_id:
        filters.append(LadderRankHistory.partner_id == membership.partner_id)
        filters.append(LadderRankHistory.player_id == membership.partner_id)

    rows = (
        LadderRankHistory.query
        .filter(LadderRankHistory.ladder_id == membership.ladder_id, or_(*filters))
        .order_by(LadderRankHistory.created_at.desc(), LadderRankHistory.id.desc())
        .limit(limit)
        .all()
    )
    if not rows:
        return [{"label": "Current", "rank": membership.rank or 0, "change": "same"}]

    history = []
    for idx, row in enumerate(rows):
        previous = rows[idx + 1].rank if idx + 1 < len(rows) else row.rank
        change = "same"
        if row.rank < previous:
            change = "up"
        elif row.rank > previous:
            change = "down"
        history.append({"label": row.round_label or "Current", "rank": row.rank, "change": change})
    return history


def _query_ids(description, ladder_id, statement, params):
    try:
        result = db.session.execute(statement, params)
        return {pid for row in result for pid in row if pid is not None}
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning("[MEMBERSHIP] Ladder %s: %s lookup failed, skipping: %s", ladder_id, description, e)
        return set()


def fallback_player_ids(ladder_id):
    """
    Player ids referencing a ladder outside the membership records: the raw
    member-id lookup, match rows and the rank history log. Each source may
    fail on its own.
    """
    params = {"ladder_id": ladder_id}
    ids = set()
    ids |= _query_ids(
        "member id", ladder_id,
        text("SELECT player_id, partner_id FROM ladder_memberships WHERE ladder_id = :ladder_id"),
        params,
    )
    ids |= _query_ids(
        "match", ladder_id,
        text("SELECT challenger_id, challenged_id FROM matches WHERE ladder_id = :ladder_id"),
        params,
    )
    ids |= _query_ids(
        "rank history", ladder_id,
        text("SELECT player_id, partner_id FROM ladder_rank_history WHERE ladder_id = :ladder_id"),
        params,
    )
    return ids


def resolve_ladder(ladder_id, strict=False):
    """Membership maps for a ladder, falling back to other tables when needed"""
    rows = load_memberships(ladder_id)
    fallback = None
    if not any(r.player_id is not None for r in rows):
        fallback = fallback_player_ids(ladder_id)
    return resolve(rows, fallback, ladder_id=ladder_id, strict=strict)


def ladder_rankings(ladder_id):
    """Ranking table rows for a ladder (empty list when nothing is known)"""
    ladder = ladder_info(ladder_id)
    rows = [r for r in load_memberships(ladder_id) if r.player_id is not None]
    if not rows:
        resolved = resolve_ladder(ladder_id)
        rows = [
            MembershipRow(id=None, ladder_id=ladder_id, player_id=pid)
            for pid in sorted(resolved.player_ids)
            if resolved.primary_of(pid) == pid
        ]
    players = players_by_id([r.player_id for r in rows] + [r.partner_id for r in rows])
    return ranking_rows(rows, players, ladder.type)

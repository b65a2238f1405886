"""
Database glue for challenges, results, scheduling and rounds.
"""

import logging
import time
from datetime import timedelta
from dataclasses import dataclass

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

import ranking
from email_integration import ResendClient
from errors import LadderError, Forbidden, NotFound, InvalidTransition
from ladder_store import (
    get_ladder, ladder_lock, ladder_info, ladders_by_id, load_memberships,
    players_by_id, resolve_ladder, stage_rank_changes,
)
from match_lifecycle import (
    accept, apply_rank_movement, apply_score, can_edit_score, cancel, expected_position,
    is_participant, mark_not_played, schedule, sort_by_round, sort_open_matches, submit_score,
)
from membership import display_name
from models import db, Match, LadderMembership, Player
from notifications import notify_scheduled, notify_round_window, recipients_for
from pairing import generate_round_matches
from predicted_rank import predict, potential_movement
from records import (
    PENDING, COMPLETED, OPEN_STATUSES, match_from_row, matches_from_rows,
)
from rounds import ROUND_LENGTH_DAYS, round_for, round_starting
from utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ScoreResult:
    match: object
    winner_id: int | None
    swapped: bool
    expected_position: str


@dataclass
class ScheduleResult:
    """Persisted schedule plus the outcome of the best-effort notification"""
    match: object
    report: object = None
    warning: object = None


def _load_match(match_id):
    row = db.session.get(Match, match_id)
    if not row:
        raise NotFound(f"Match {match_id} not found")
    record = match_from_row(row)
    if record is None:
        raise LadderError(f"Match {match_id} has invalid data")
    return row, record


def _team(primary_id, partner_by_player):
    partner_id = partner_by_player.get(primary_id)
    return [pid for pid in (primary_id, partner_id) if pid is not None]


def _apply_stats(record, winner_id, partner_by_player, delta):
    """Add delta to the wins of the winning team and the losses of the other"""
    if winner_id is None:
        return
    loser_id = record.opponent_of(winner_id)
    for pid in _team(winner_id, partner_by_player):
        player = db.session.get(Player, pid)
        if player:
            player.wins = max(0, (player.wins or 0) + delta)
    for pid in _team(loser_id, partner_by_player):
        player = db.session.get(Player, pid)
        if player:
            player.losses = max(0, (player.losses or 0) + delta)


def create_challenge(actor, ladder_id, opponent_id, now=None):
    """The acting player's team challenges another team on the same ladder"""
    ladder = get_ladder(ladder_id)
    resolved = resolve_ladder(ladder_id)
    if actor.player_id not in resolved.player_ids:
        raise Forbidden("Only ladder members can issue challenges.")
    if opponent_id not in resolved.player_ids:
        raise NotFound(f"Player {opponent_id} is not on this ladder")

    challenger_id = resolved.primary_of(actor.player_id)
    challenged_id = resolved.primary_of(opponent_id)
    if challenger_id == challenged_id:
        raise LadderError("You cannot challenge your own team")

    existing = Match.query.filter(
        Match.ladder_id == ladder_id,
        Match.status.in_(OPEN_STATUSES),
        or_(
            (Match.challenger_id == challenger_id) & (Match.challenged_id == challenged_id),
            (Match.challenger_id == challenged_id) & (Match.challenged_id == challenger_id),
        ),
    ).first()
    if existing:
        raise InvalidTransition("There is already an open match between these teams")

    current = round_for(now or utcnow())
    row = Match(
        ladder_id=ladder.id,
        challenger_id=challenger_id,
        challenged_id=challenged_id,
        status=PENDING,
        round_label=current.label,
        round_start_date=current.start_date,
        round_end_date=current.end_date,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("[MATCH] %s challenged %s on ladder %s", challenger_id, challenged_id, ladder_id)
    return row


def accept_challenge(actor, match_id):
    row, record = _load_match(match_id)
    ladder = get_ladder(row.ladder_id)
    resolved = resolve_ladder(ladder.id)
    accepted = accept(record, actor.for_club(ladder.club_id), resolved.partner_by_player)
    row.status = accepted.status
    row.updated_at = utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return row


def cancel_match(actor, match_id):
    row, record = _load_match(match_id)
    ladder = get_ladder(row.ladder_id)
    resolved = resolve_ladder(ladder.id)
    cancelled = cancel(record, actor.for_club(ladder.club_id), resolved.partner_by_player)
    row.status = cancelled.status
    row.updated_at = utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("[MATCH] Match %s cancelled by player %s", match_id, actor.player_id)
    return row


def submit_match_score(actor, match_id, score1, score2, now=None):
    """
    Record (or correct) a match result.

    On the first completion of a match on a swap ladder an upset swaps the
    two teams' ranks. Corrections inside the edit window only move the
    win/loss statistics.

    Returns:
        ScoreResult
    """
    now = now or utcnow()
    row, _ = _load_match(match_id)
    ladder = get_ladder(row.ladder_id)
    swapped = False

    with ladder_lock(ladder.id):
        # ranks and status may have moved while waiting on the lock
        db.session.expire_all()
        row, record = _load_match(match_id)
        resolved = resolve_ladder(ladder.id)
        outcome = submit_score(
            record, score1, score2, actor.for_club(ladder.club_id), resolved.partner_by_player, now,
        )
        challenger_rank = resolved.rank_by_player.get(record.challenger_id)
        challenged_rank = resolved.rank_by_player.get(record.challenged_id)

        try:
            if not outcome.first_completion:
                _apply_stats(record, record.winner_id, resolved.partner_by_player, -1)
            _apply_stats(record, outcome.winner_id, resolved.partner_by_player, 1)

            if outcome.first_completion and ladder.swap_on_upset:
                movement = apply_rank_movement(
                    challenger_rank, challenged_rank, outcome.winner_id, record.challenger_id,
                )
                if movement.swapped:
                    swapped = _swap_team_ranks(ladder.id, record, row.round_label)

            completed = apply_score(record, outcome, now)
            row.status = completed.status
            row.winner_id = completed.winner_id
            row.score = completed.score
            row.player1_score = completed.player1_score
            row.player2_score = completed.player2_score
            row.scheduled_date = to_naive_utc(completed.scheduled_date)
            row.updated_at = to_naive_utc(completed.updated_at)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    names = {pid: p.name for pid, p in players_by_id(resolved.player_ids).items() if p.name}
    text = expected_position(
        record,
        outcome.winner_id,
        challenger_rank,
        challenged_rank,
        display_name(record.challenger_id, ladder.type, resolved, names),
        display_name(record.challenged_id, ladder.type, resolved, names),
    )
    logger.info("[MATCH] Match %s completed %s (%s)", match_id, outcome.score_string, text)
    return ScoreResult(match=row, winner_id=outcome.winner_id, swapped=swapped, expected_position=text)


def _swap_team_ranks(ladder_id, record, round_label):
    before = load_memberships(ladder_id)
    by_player = {m.player_id: m for m in before}
    first = by_player.get(record.challenger_id)
    second = by_player.get(record.challenged_id)
    if first is None or second is None:
        logger.warning("[MATCH] Match %s: team without membership, ranks not swapped", record.id)
        return False
    after = ranking.swap_ranks(before, first.id, second.id)
    stage_rank_changes(ladder_id, before, after, round_label=round_label)
    return True


def schedule_match(actor, match_id, datetime_iso, client=None, sleep=time.sleep):
    """
    Set the match date, commit, then email both teams.

    A failed email never undoes the schedule; it comes back as a warning on
    the result.
    """
    row, record = _load_match(match_id)
    ladder = get_ladder(row.ladder_id)
    resolved = resolve_ladder(ladder.id)
    club_actor = actor.for_club(ladder.club_id)
    if not (club_actor.has_admin_rights or is_participant(record, actor.player_id, resolved.partner_by_player)):
        raise Forbidden("Only players involved in the match can schedule it.")

    scheduled = schedule(record, datetime_iso)
    row.status = scheduled.status
    row.scheduled_date = to_naive_utc(scheduled.scheduled_date)
    row.updated_at = utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("[MATCH] Match %s scheduled for %s", match_id, row.scheduled_date)

    record = match_from_row(row)
    involved = _team(record.challenger_id, resolved.partner_by_player) + _team(record.challenged_id, resolved.partner_by_player)
    players = players_by_id(involved)
    email_by_player = {pid: p.email for pid, p in players.items()}
    if actor.player_id not in recipients_for(record, resolved.partner_by_player, email_by_player):
        logger.info("[EMAIL] Match %s scheduled by a non-recipient, no participant notification sent", match_id)
        return ScheduleResult(match=row)

    report = notify_scheduled(
        record,
        ladder_info(ladder.id),
        actor,
        resolved.partner_by_player,
        players,
        client or ResendClient(),
        sleep=sleep,
    )
    warning = report.warning()
    if warning:
        logger.warning("[EMAIL] Match %s: %s", match_id, warning.message)
    return ScheduleResult(match=row, report=report, warning=warning)


def predicted_rank_for(ladder_id, player_id, round_label=None):
    ladder = get_ladder(ladder_id)
    round_label = round_label or round_for(utcnow()).label
    resolved = resolve_ladder(ladder.id)
    rows = Match.query.filter_by(ladder_id=ladder.id, round_label=round_label).all()
    matches = matches_from_rows(rows)
    primary = resolved.primary_of(player_id)

    predicted = predict(
        player_id,
        ladder.id,
        round_label,
        [m for m in matches if m.status == COMPLETED],
        resolved.rank_by_player,
        resolved.primary_by_player,
    )
    movement = potential_movement(primary, matches, resolved.rank_by_player)
    return {
        "player_id": player_id,
        "round_label": round_label,
        "current_rank": resolved.rank_by_player.get(primary),
        "predicted_rank": predicted,
        "potential_up": movement[0] if movement else None,
        "potential_down": movement[1] if movement else None,
    }


def match_to_dict(record, ladder, resolved, names, now=None):
    return {
        "id": record.id,
        "ladder_id": record.ladder_id,
        "ladder_name": ladder.display_name if ladder else "Ladder",
        "round_label": record.round_label,
        "status": record.status,
        "challenger_id": record.challenger_id,
        "challenged_id": record.challenged_id,
        "challenger_name": display_name(record.challenger_id, ladder.type if ladder else None, resolved, names),
        "challenged_name": display_name(record.challenged_id, ladder.type if ladder else None, resolved, names),
        "challenger_rank": resolved.rank_by_player.get(record.challenger_id),
        "challenged_rank": resolved.rank_by_player.get(record.challenged_id),
        "scheduled_date": record.scheduled_date.isoformat() if record.scheduled_date else None,
        "winner_id": record.winner_id,
        "score": record.score,
        "can_edit_score": record.status == COMPLETED and can_edit_score(record, now),
    }


def matches_for_player(actor, now=None):
    """Open and finished matches of every team the player belongs to"""
    memberships = LadderMembership.query.filter(
        or_(LadderMembership.player_id == actor.player_id, LadderMembership.partner_id == actor.player_id)
    ).all()
    ladder_ids = sorted({m.ladder_id for m in memberships})
    primaries = {m.player_id for m in memberships}

    rows = Match.query.filter(
        Match.ladder_id.in_(ladder_ids),
        or_(Match.challenger_id.in_(primaries), Match.challenged_id.in_(primaries)),
    ).all() if ladder_ids else []
    records = matches_from_rows(rows)

    ladders = ladders_by_id(ladder_ids)
    resolved_by_ladder = {ladder_id: resolve_ladder(ladder_id) for ladder_id in ladder_ids}
    all_players = set()
    for resolved in resolved_by_ladder.values():
        all_players |= resolved.player_ids
    names = {pid: p.name for pid, p in players_by_id(all_players).items() if p.name}

    def as_dict(record):
        return match_to_dict(record, ladders.get(record.ladder_id), resolved_by_ladder[record.ladder_id], names, now)

    return {
        "open": [as_dict(m) for m in sort_open_matches(records)],
        "history": [as_dict(m) for m in sort_by_round([m for m in records if m.status not in OPEN_STATUSES])],
    }


def generate_round(ladder_id, today=None, rng=None):
    """
    Create the pending matches of the current round for one ladder. Skipped
    when the ladder already has matches in that round.
    """
    ladder = ladder_info(ladder_id)
    current = round_for(today or utcnow())
    if Match.query.filter_by(ladder_id=ladder_id, round_label=current.label).first():
        logger.info("[PAIRING] Ladder %s already has matches for %s, skipping", ladder_id, current.label)
        return []

    previous = round_starting(current.start_date - timedelta(days=ROUND_LENGTH_DAYS))
    played = {
        (min(m.challenger_id, m.challenged_id), max(m.challenger_id, m.challenged_id))
        for m in Match.query.filter_by(ladder_id=ladder_id, round_label=previous.label).all()
    }

    records = generate_round_matches(ladder, load_memberships(ladder_id), current, rng=rng, already_played=played)
    rows = [
        Match(
            ladder_id=r.ladder_id,
            challenger_id=r.challenger_id,
            challenged_id=r.challenged_id,
            status=r.status,
            round_label=r.round_label,
            round_start_date=r.round_start_date,
            round_end_date=r.round_end_date,
        )
        for r in records
    ]
    try:
        db.session.add_all(rows)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info("[PAIRING] Ladder %s: %d matches created for %s", ladder_id, len(rows), current.label)
    return rows


def close_expired_rounds(today=None):
    """Open matches whose round has ended become not_played. Returns the count."""
    today = today or utcnow().date()
    rows = Match.query.filter(
        Match.status.in_(OPEN_STATUSES),
        Match.round_end_date.isnot(None),
        Match.round_end_date < today,
    ).all()
    closed = 0
    try:
        for row in rows:
            record = match_from_row(row)
            if record is None:
                continue
            row.status = mark_not_played(record).status
            row.updated_at = utcnow()
            closed += 1
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    if closed:
        logger.info("[MATCH] %d matches marked not played after their round ended", closed)
    return closed


def send_round_notifications(mode, today=None, client=None, sleep=time.sleep):
    """
    Batch round-start / mid-round reminder emails for every ladder with due
    matches today.

    Returns:
        NotificationReport
    """
    today = today or utcnow().date()
    rows = Match.query.filter(
        Match.status.in_(OPEN_STATUSES),
        Match.round_start_date <= today,
        Match.round_end_date >= today,
    ).all()
    records = matches_from_rows(rows)

    ladder_ids = {m.ladder_id for m in records}
    primary_ids = {pid for m in records for pid in m.participant_ids}
    partners_by_ladder = {}
    if ladder_ids and primary_ids:
        for membership in LadderMembership.query.filter(
            LadderMembership.ladder_id.in_(ladder_ids),
            LadderMembership.player_id.in_(primary_ids),
        ).all():
            partners_by_ladder.setdefault(membership.ladder_id, {})[membership.player_id] = membership.partner_id

    partner_ids = {pid for partners in partners_by_ladder.values() for pid in partners.values() if pid is not None}
    return notify_round_window(
        mode,
        records,
        ladders_by_id(ladder_ids),
        partners_by_ladder,
        players_by_id(primary_ids | partner_ids),
        client or ResendClient(),
        today,
        sleep=sleep,
    )

"""
Match lifecycle: status transitions, score submission and rank movement.

    pending   -> accepted, scheduled, completed, cancelled, not_played
    accepted  -> scheduled, completed, cancelled, not_played
    scheduled -> scheduled (reschedule), completed, cancelled, not_played
    completed -> completed again only inside the edit window
    cancelled, not_played: terminal

All functions are pure; they return new MatchRecord objects or outcome records.
"""

from dataclasses import dataclass, replace
from datetime import datetime

from errors import LadderError, InvalidScore, Forbidden, EditWindowClosed, InvalidTransition
from records import (
    PENDING, ACCEPTED, SCHEDULED, COMPLETED, CANCELLED, NOT_PLAYED, OPEN_STATUSES,
)
from rounds import parse_round_label
from utils import parse_datetime, round_to_minute, utcnow, to_naive_utc

TRANSITIONS = {
    PENDING: {ACCEPTED, SCHEDULED, COMPLETED, CANCELLED, NOT_PLAYED},
    ACCEPTED: {SCHEDULED, COMPLETED, CANCELLED, NOT_PLAYED},
    SCHEDULED: {SCHEDULED, COMPLETED, CANCELLED, NOT_PLAYED},
    COMPLETED: set(),
    CANCELLED: set(),
    NOT_PLAYED: set(),
}


@dataclass(frozen=True)
class ScoreOutcome:
    winner_id: int | None
    status: str
    score_string: str
    player1_score: int
    player2_score: int
    first_completion: bool

    @property
    def is_draw(self):
        return self.winner_id is None


@dataclass(frozen=True)
class RankMovement:
    challenger_rank: int | None
    challenged_rank: int | None
    swapped: bool


def can_transition(current, target):
    return target in TRANSITIONS.get(current, set())


def is_participant(match, player_id, partner_by_player=None):
    """Challenger, challenged, or the doubles partner of either"""
    if player_id is None:
        return False
    if player_id in match.participant_ids:
        return True
    partners = partner_by_player or {}
    return player_id in (partners.get(match.challenger_id), partners.get(match.challenged_id))


def _require_participant_or_admin(match, actor, partner_by_player, action):
    if actor is None:
        raise Forbidden(f"Only players involved in the match can {action}.")
    if actor.has_admin_rights or is_participant(match, actor.player_id, partner_by_player):
        return
    raise Forbidden(f"Only players involved in the match can {action}.")


def last_activity(match):
    """updated_at, else scheduled_date, else created_at"""
    return match.updated_at or match.scheduled_date or match.created_at


def can_edit_score(match, now=None):
    """
    A completed score may be corrected while 'now' is in the same UTC calendar
    month as the match's last activity.
    """
    stamp = last_activity(match)
    if stamp is None:
        return False
    stamp = to_naive_utc(stamp)
    now = to_naive_utc(now or utcnow())
    return (stamp.year, stamp.month) == (now.year, now.month)


def _coerce_score(value):
    if isinstance(value, bool):
        raise InvalidScore("Scores must be whole, non-negative numbers")
    if isinstance(value, int):
        score = value
    elif isinstance(value, float) and value.is_integer():
        score = int(value)
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        score = int(value.strip())
    else:
        raise InvalidScore("Scores must be whole, non-negative numbers")
    if score < 0:
        raise InvalidScore("Scores must be whole, non-negative numbers")
    return score


def submit_score(match, score1, score2, actor, partner_by_player=None, now=None):
    """
    Record a result for a match.

    score1 belongs to the challenger, score2 to the challenged side. Equal
    scores are a draw (winner None). Authorization and score validation
    happen before anything is computed.

    Returns:
        ScoreOutcome
    """
    _require_participant_or_admin(match, actor, partner_by_player, "update the score")

    first = _coerce_score(score1)
    second = _coerce_score(score2)

    if match.status == COMPLETED:
        if not can_edit_score(match, now):
            raise EditWindowClosed("Scores can only be corrected in the month the match was completed.")
        first_completion = False
    elif can_transition(match.status, COMPLETED):
        first_completion = True
    else:
        raise InvalidTransition(f"Cannot record a score for a {match.status} match")

    if first == second:
        winner_id = None
    elif first > second:
        winner_id = match.challenger_id
    else:
        winner_id = match.challenged_id

    return ScoreOutcome(
        winner_id=winner_id,
        status=COMPLETED,
        score_string=f"{first}-{second}",
        player1_score=first,
        player2_score=second,
        first_completion=first_completion,
    )


def apply_score(match, outcome, now=None):
    """MatchRecord with the outcome written in"""
    return replace(
        match,
        status=outcome.status,
        winner_id=outcome.winner_id,
        score=outcome.score_string,
        player1_score=outcome.player1_score,
        player2_score=outcome.player2_score,
        scheduled_date=match.scheduled_date or round_to_minute(now or utcnow()),
        updated_at=now or utcnow(),
    )


def apply_rank_movement(challenger_rank, challenged_rank, winner_id, challenger_id):
    """
    Swap ranks only on an upset: the challenger won and was ranked worse
    (numerically higher). Draws, defender wins and unranked sides never move.
    """
    if (
        winner_id is not None
        and winner_id == challenger_id
        and challenger_rank is not None
        and challenged_rank is not None
        and challenger_rank > challenged_rank
    ):
        return RankMovement(challenged_rank, challenger_rank, True)
    return RankMovement(challenger_rank, challenged_rank, False)


def expected_position(match, winner_id, challenger_rank, challenged_rank, challenger_name, challenged_name):
    if winner_id == match.challenger_id and (challenger_rank or 0) > (challenged_rank or 0):
        return f"{challenger_name} moves to rank #{challenged_rank}"
    if winner_id == match.challenged_id:
        return f"{challenged_name} defends rank #{challenged_rank}"
    return "No rank change"


def schedule(match, datetime_iso):
    """
    Set (or move) the match date. The timestamp is rounded down to the minute
    and keeps whatever UTC offset it was given.
    """
    if not can_transition(match.status, SCHEDULED):
        raise InvalidTransition(f"Cannot schedule a {match.status} match")
    when = parse_datetime(datetime_iso)
    if not isinstance(when, datetime):
        raise LadderError(f"Invalid date for scheduling: {datetime_iso!r}")
    return replace(match, status=SCHEDULED, scheduled_date=round_to_minute(when))


def accept(match, actor, partner_by_player=None):
    """The challenged side accepts a pending challenge"""
    if actor is None or not (
        actor.has_admin_rights
        or actor.player_id == match.challenged_id
        or (partner_by_player or {}).get(match.challenged_id) == actor.player_id
    ):
        raise Forbidden("Only the challenged player can accept this challenge.")
    if match.status != PENDING:
        raise InvalidTransition(f"Cannot accept a {match.status} match")
    return replace(match, status=ACCEPTED)


def cancel(match, actor, partner_by_player=None):
    _require_participant_or_admin(match, actor, partner_by_player, "cancel it")
    if not can_transition(match.status, CANCELLED):
        raise InvalidTransition(f"Cannot cancel a {match.status} match")
    return replace(match, status=CANCELLED)


def mark_not_played(match):
    """Round closed without a result: no rank movement for either side"""
    if not can_transition(match.status, NOT_PLAYED):
        raise InvalidTransition(f"Cannot close a {match.status} match")
    return replace(match, status=NOT_PLAYED)


_OPEN_WEIGHT = {SCHEDULED: 0, ACCEPTED: 1, PENDING: 2}


def sort_open_matches(matches):
    """Open matches: scheduled first, then accepted, then pending; earliest date first"""
    def key(m):
        when = to_naive_utc(m.scheduled_date) if m.scheduled_date else datetime.max
        return (_OPEN_WEIGHT.get(m.status, 3), when)
    return sorted((m for m in matches if m.status in OPEN_STATUSES), key=key)


def sort_by_round(matches):
    """Newest round label first, then most recently updated"""
    def key(m):
        year, number = parse_round_label(m.round_label)
        stamp = m.updated_at or m.created_at or datetime.min
        return (year, number, to_naive_utc(stamp))
    return sorted(matches, key=key, reverse=True)

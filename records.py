"""
Plain records handed to the ranking, membership and match modules.

Rows coming out of the database (model objects or dicts) are converted here.
A row that cannot be used is logged and skipped instead of being passed on
half-formed.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, date

from utils import parse_datetime, parse_date

logger = logging.getLogger(__name__)

SINGLES = "singles"
DOUBLES = "doubles"
LADDER_TYPES = (SINGLES, DOUBLES)

PENDING = "pending"
ACCEPTED = "accepted"
SCHEDULED = "scheduled"
COMPLETED = "completed"
CANCELLED = "cancelled"
NOT_PLAYED = "not_played"
MATCH_STATUSES = (PENDING, ACCEPTED, SCHEDULED, COMPLETED, CANCELLED, NOT_PLAYED)
OPEN_STATUSES = (PENDING, ACCEPTED, SCHEDULED)


@dataclass(frozen=True)
class MembershipRow:
    id: int | None
    ladder_id: int | None
    player_id: int | None
    partner_id: int | None = None
    rank: int | None = None
    team_avatar_url: str | None = None
    match_frequency: int = 1

    def with_rank(self, rank):
        return replace(self, rank=rank)


@dataclass(frozen=True)
class MatchRecord:
    id: int | None
    ladder_id: int | None
    challenger_id: int
    challenged_id: int
    status: str = PENDING
    round_label: str | None = None
    round_start_date: date | None = None
    round_end_date: date | None = None
    scheduled_date: datetime | None = None
    winner_id: int | None = None
    score: str | None = None
    player1_score: int | None = None
    player2_score: int | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def participant_ids(self):
        return (self.challenger_id, self.challenged_id)

    def opponent_of(self, player_id):
        if player_id == self.challenger_id:
            return self.challenged_id
        if player_id == self.challenged_id:
            return self.challenger_id
        return None


@dataclass(frozen=True)
class LadderInfo:
    id: int
    club_id: int | None = None
    name: str | None = None
    type: str = SINGLES
    swap_on_upset: bool = True

    @property
    def display_name(self):
        return self.name or "Ladder"


@dataclass(frozen=True)
class PlayerInfo:
    id: int
    name: str | None = None
    email: str | None = None
    wins: int = 0
    losses: int = 0


@dataclass(frozen=True)
class Actor:
    """The player performing an action, passed explicitly into every operation"""
    player_id: int | None
    email: str | None = None
    is_admin: bool = False
    is_super_admin: bool = False
    club_ids: tuple = field(default_factory=tuple)

    @property
    def has_admin_rights(self):
        return self.is_admin or self.is_super_admin

    def administers(self, club_id):
        if self.is_super_admin:
            return True
        return self.is_admin and club_id in self.club_ids

    def for_club(self, club_id):
        """Copy whose admin flag only holds if this actor administers club_id"""
        return replace(self, is_admin=self.administers(club_id))


def _get(row, key, default=None):
    if isinstance(row, dict):
        return row.get(key, default)
    return getattr(row, key, default)


def _optional_int(value):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"not an integer: {value!r}")
        return int(value)
    return int(value)


def membership_from_row(row):
    """Build a MembershipRow, or return None (logged) if the row is unusable"""
    try:
        frequency = _optional_int(_get(row, "match_frequency"))
        record = MembershipRow(
            id=_optional_int(_get(row, "id")),
            ladder_id=_optional_int(_get(row, "ladder_id")),
            player_id=_optional_int(_get(row, "player_id")),
            partner_id=_optional_int(_get(row, "partner_id")),
            rank=_optional_int(_get(row, "rank")),
            team_avatar_url=_get(row, "team_avatar_url"),
            match_frequency=1 if frequency is None else frequency,
        )
    except (TypeError, ValueError) as e:
        logger.warning("[MEMBERSHIP] Skipping unusable membership row %r: %s", row, e)
        return None
    if record.player_id is None and record.partner_id is None:
        logger.warning("[MEMBERSHIP] Skipping membership row %s without players", record.id)
        return None
    if record.rank is not None and record.rank < 1:
        logger.warning("[MEMBERSHIP] Ignoring non-positive rank on membership %s", record.id)
        record = record.with_rank(None)
    return record


def memberships_from_rows(rows):
    return [m for m in (membership_from_row(r) for r in rows or []) if m is not None]


def match_from_row(row):
    """Build a MatchRecord, or return None (logged) if the row is unusable"""
    try:
        challenger_id = _optional_int(_get(row, "challenger_id"))
        challenged_id = _optional_int(_get(row, "challenged_id"))
        status = _get(row, "status") or PENDING
        if challenger_id is None or challenged_id is None:
            raise ValueError("missing participants")
        if status not in MATCH_STATUSES:
            raise ValueError(f"unknown status {status!r}")
        winner_id = _optional_int(_get(row, "winner_id"))
        if winner_id is not None and winner_id not in (challenger_id, challenged_id):
            raise ValueError(f"winner {winner_id} is not a participant")
        record = MatchRecord(
            id=_optional_int(_get(row, "id")),
            ladder_id=_optional_int(_get(row, "ladder_id")),
            challenger_id=challenger_id,
            challenged_id=challenged_id,
            status=status,
            round_label=_get(row, "round_label"),
            round_start_date=parse_date(_get(row, "round_start_date")),
            round_end_date=parse_date(_get(row, "round_end_date")),
            scheduled_date=parse_datetime(_get(row, "scheduled_date")),
            winner_id=winner_id,
            score=_get(row, "score"),
            player1_score=_optional_int(_get(row, "player1_score")),
            player2_score=_optional_int(_get(row, "player2_score")),
            notes=_get(row, "notes"),
            created_at=parse_datetime(_get(row, "created_at")),
            updated_at=parse_datetime(_get(row, "updated_at")),
        )
    except (TypeError, ValueError) as e:
        logger.warning("[MATCH] Skipping unusable match row %r: %s", _get(row, "id"), e)
        return None
    return record


def matches_from_rows(rows):
    return [m for m in (match_from_row(r) for r in rows or []) if m is not None]


def ladder_from_row(row):
    return LadderInfo(
        id=_get(row, "id"),
        club_id=_get(row, "club_id"),
        name=_get(row, "name"),
        type=_get(row, "type") if _get(row, "type") in LADDER_TYPES else SINGLES,
        swap_on_upset=bool(_get(row, "swap_on_upset", True)),
    )


def player_from_row(row):
    return PlayerInfo(
        id=_get(row, "id"),
        name=_get(row, "name"),
        email=_get(row, "email"),
        wins=_get(row, "wins") or 0,
        losses=_get(row, "losses") or 0,
    )


def actor_from_player(player):
    return Actor(
        player_id=player.id,
        email=player.email,
        is_admin=bool(player.is_admin),
        is_super_admin=bool(player.is_super_admin),
        club_ids=tuple(player.clubs or ()),
    )

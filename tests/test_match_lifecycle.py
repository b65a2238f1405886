"""
Tests for match status transitions, score submission and rank movement.
"""

from datetime import datetime, timedelta, timezone

import pytest

import match_lifecycle as lifecycle
from errors import LadderError, InvalidScore, Forbidden, EditWindowClosed, InvalidTransition
from records import MatchRecord, Actor, PENDING, ACCEPTED, SCHEDULED, COMPLETED, CANCELLED, NOT_PLAYED

CHALLENGER, CHALLENGED, OUTSIDER = 10, 20, 99


def _match(status=PENDING, **kwargs):
    return MatchRecord(id=1, ladder_id=1, challenger_id=CHALLENGER, challenged_id=CHALLENGED, status=status, **kwargs)


def _submit(match, s1, s2, player_id=CHALLENGER, **kwargs):
    return lifecycle.submit_score(match, s1, s2, Actor(player_id=player_id), **kwargs)


def test_challenger_win():
    outcome = _submit(_match(), 6, 4)
    assert outcome.winner_id == CHALLENGER
    assert outcome.status == COMPLETED
    assert outcome.score_string == "6-4"
    assert outcome.first_completion


def test_challenged_win():
    outcome = _submit(_match(), 4, 6)
    assert outcome.winner_id == CHALLENGED
    assert outcome.score_string == "4-6"


def test_equal_scores_are_a_draw():
    outcome = _submit(_match(), 6, 6)
    assert outcome.winner_id is None
    assert outcome.is_draw
    assert outcome.status == COMPLETED


@pytest.mark.parametrize("bad", [-1, 2.5, "abc", "", None, True, "²", "٣"])
def test_invalid_scores_rejected(bad):
    with pytest.raises(InvalidScore):
        _submit(_match(), bad, 3)


def test_numeric_strings_and_whole_floats_accepted():
    outcome = _submit(_match(), "6", 4.0)
    assert (outcome.player1_score, outcome.player2_score) == (6, 4)


def test_outsider_cannot_submit():
    with pytest.raises(Forbidden):
        _submit(_match(), 6, 4, player_id=OUTSIDER)


def test_authorization_checked_before_score():
    """An outsider gets Forbidden even with a malformed score"""
    with pytest.raises(Forbidden):
        _submit(_match(), "abc", 4, player_id=OUTSIDER)


def test_admin_and_partner_may_submit():
    admin = Actor(player_id=OUTSIDER, is_admin=True)
    assert lifecycle.submit_score(_match(), 6, 4, admin).winner_id == CHALLENGER

    outcome = _submit(_match(), 1, 6, player_id=11, partner_by_player={CHALLENGER: 11})
    assert outcome.winner_id == CHALLENGED


def test_completed_score_editable_in_same_month():
    match = _match(COMPLETED, winner_id=CHALLENGER, updated_at=datetime(2026, 2, 10))
    outcome = _submit(match, 2, 6, now=datetime(2026, 2, 20))
    assert outcome.winner_id == CHALLENGED
    assert not outcome.first_completion


def test_completed_score_locked_after_month_end():
    match = _match(COMPLETED, winner_id=CHALLENGER, updated_at=datetime(2026, 2, 10))
    with pytest.raises(EditWindowClosed):
        _submit(match, 2, 6, now=datetime(2026, 3, 1))


def test_edit_window_falls_back_to_scheduled_date():
    match = _match(COMPLETED, scheduled_date=datetime(2026, 2, 27, 19, 0))
    assert lifecycle.can_edit_score(match, datetime(2026, 2, 28))
    assert not lifecycle.can_edit_score(match, datetime(2026, 3, 2))
    assert not lifecycle.can_edit_score(_match(COMPLETED), datetime(2026, 3, 2))


def test_edit_window_is_utc_month():
    cet = timezone(timedelta(hours=1))
    match = _match(COMPLETED, updated_at=datetime(2026, 3, 1, 0, 30, tzinfo=cet))
    assert lifecycle.can_edit_score(match, datetime(2026, 2, 28, 12, 0))


@pytest.mark.parametrize("status", [CANCELLED, NOT_PLAYED])
def test_terminal_matches_take_no_score(status):
    with pytest.raises(InvalidTransition):
        _submit(_match(status), 6, 4)


def test_apply_score_sets_date_when_missing():
    now = datetime(2026, 2, 10, 18, 42, 31)
    match = lifecycle.apply_score(_match(), _submit(_match(), 6, 4), now)
    assert match.status == COMPLETED
    assert match.winner_id == CHALLENGER
    assert match.score == "6-4"
    assert match.scheduled_date == datetime(2026, 2, 10, 18, 42)
    assert match.updated_at == now


def test_upset_swaps_ranks():
    """Challenger ranked 5 beats the rank-2 side: they swap"""
    movement = lifecycle.apply_rank_movement(5, 2, CHALLENGER, CHALLENGER)
    assert movement.swapped
    assert (movement.challenger_rank, movement.challenged_rank) == (2, 5)


def test_no_swap_when_better_ranked_challenger_wins():
    movement = lifecycle.apply_rank_movement(2, 5, CHALLENGER, CHALLENGER)
    assert not movement.swapped
    assert (movement.challenger_rank, movement.challenged_rank) == (2, 5)


@pytest.mark.parametrize("winner", [None, CHALLENGED])
def test_no_swap_for_draw_or_defence(winner):
    assert not lifecycle.apply_rank_movement(5, 2, winner, CHALLENGER).swapped


def test_no_swap_without_ranks():
    assert not lifecycle.apply_rank_movement(None, 2, CHALLENGER, CHALLENGER).swapped


def test_expected_position_text():
    match = _match()
    assert lifecycle.expected_position(match, CHALLENGER, 5, 2, "Ann", "Bob") == "Ann moves to rank #2"
    assert lifecycle.expected_position(match, CHALLENGED, 5, 2, "Ann", "Bob") == "Bob defends rank #2"
    assert lifecycle.expected_position(match, None, 5, 2, "Ann", "Bob") == "No rank change"


def test_schedule_rounds_to_minute_and_keeps_offset():
    match = lifecycle.schedule(_match(ACCEPTED), "2026-02-10T18:45:33+01:00")
    assert match.status == SCHEDULED
    assert match.scheduled_date == datetime(2026, 2, 10, 18, 45, tzinfo=timezone(timedelta(hours=1)))


def test_reschedule_allowed():
    match = _match(SCHEDULED, scheduled_date=datetime(2026, 2, 10, 18, 0))
    assert lifecycle.schedule(match, "2026-02-11T19:00:00Z").scheduled_date.day == 11


def test_schedule_rejects_bad_input():
    with pytest.raises(LadderError):
        lifecycle.schedule(_match(), "next tuesday")
    with pytest.raises(InvalidTransition):
        lifecycle.schedule(_match(COMPLETED), "2026-02-10T18:00:00")


def test_accept_by_challenged_side_only():
    assert lifecycle.accept(_match(), Actor(player_id=CHALLENGED)).status == ACCEPTED
    assert lifecycle.accept(_match(), Actor(player_id=21), {CHALLENGED: 21}).status == ACCEPTED
    with pytest.raises(Forbidden):
        lifecycle.accept(_match(), Actor(player_id=CHALLENGER))
    with pytest.raises(InvalidTransition):
        lifecycle.accept(_match(SCHEDULED), Actor(player_id=CHALLENGED))


def test_cancel():
    assert lifecycle.cancel(_match(), Actor(player_id=CHALLENGER)).status == CANCELLED
    with pytest.raises(Forbidden):
        lifecycle.cancel(_match(), Actor(player_id=OUTSIDER))
    with pytest.raises(InvalidTransition):
        lifecycle.cancel(_match(COMPLETED), Actor(player_id=CHALLENGER))


def test_mark_not_played():
    assert lifecycle.mark_not_played(_match(SCHEDULED)).status == NOT_PLAYED
    with pytest.raises(InvalidTransition):
        lifecycle.mark_not_played(_match(COMPLETED))


def test_sort_open_matches():
    scheduled_late = MatchRecord(1, 1, 1, 2, SCHEDULED, scheduled_date=datetime(2026, 2, 12, 19, 0))
    scheduled_early = MatchRecord(2, 1, 3, 4, SCHEDULED, scheduled_date=datetime(2026, 2, 10, 19, 0))
    pending = MatchRecord(3, 1, 5, 6, PENDING)
    accepted = MatchRecord(4, 1, 7, 8, ACCEPTED)
    done = MatchRecord(5, 1, 9, 10, COMPLETED)

    result = lifecycle.sort_open_matches([pending, done, scheduled_late, accepted, scheduled_early])
    assert [m.id for m in result] == [2, 1, 4, 3]


def test_sort_by_round_newest_first():
    older = MatchRecord(1, 1, 1, 2, COMPLETED, round_label="2026-R2", updated_at=datetime(2026, 1, 20))
    newer = MatchRecord(2, 1, 1, 2, COMPLETED, round_label="2026-R10", updated_at=datetime(2026, 5, 20))
    last_year = MatchRecord(3, 1, 1, 2, COMPLETED, round_label="2025-R26", updated_at=datetime(2025, 12, 30))
    assert [m.id for m in lifecycle.sort_by_round([older, last_year, newer])] == [2, 1, 3]

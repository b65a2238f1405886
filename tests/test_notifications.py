"""
Tests for the scheduled-match email and the round digests.
"""

from datetime import date, datetime

import pytest

import notifications
from errors import Forbidden, InvalidTransition, PartialNotificationFailure
from records import MatchRecord, LadderInfo, PlayerInfo, Actor, DOUBLES, SINGLES, PENDING, SCHEDULED, ACCEPTED
from rounds import ROUND_START, MID_ROUND_REMINDER

ANN, BOB, CAT, DAN, EVE = 1, 2, 3, 4, 5

PLAYERS = {
    ANN: PlayerInfo(id=ANN, name="Ann", email="ann@example.com"),
    BOB: PlayerInfo(id=BOB, name="Bob", email="bob@example.com"),
    CAT: PlayerInfo(id=CAT, name="Cat", email="cat@example.com"),
    DAN: PlayerInfo(id=DAN, name="Dan", email="dan@example.com"),
    EVE: PlayerInfo(id=EVE, name="Eve", email=None),
}
PARTNERS = {ANN: BOB, BOB: ANN, CAT: DAN, DAN: CAT}
DOUBLES_LADDER = LadderInfo(id=1, name="Mixed Doubles", type=DOUBLES)
SINGLES_LADDER = LadderInfo(id=2, name="Singles", type=SINGLES)


def _scheduled(challenger=ANN, challenged=CAT, ladder_id=1):
    return MatchRecord(
        id=9,
        ladder_id=ladder_id,
        challenger_id=challenger,
        challenged_id=challenged,
        status=SCHEDULED,
        round_label="2026-R3",
        scheduled_date=datetime(2026, 2, 10, 19, 30),
    )


def _round_match(challenger, challenged, ladder_id, status=PENDING, scheduled_date=None):
    return MatchRecord(
        id=None,
        ladder_id=ladder_id,
        challenger_id=challenger,
        challenged_id=challenged,
        status=status,
        round_label="2026-R3",
        round_start_date=date(2026, 2, 2),
        round_end_date=date(2026, 2, 15),
        scheduled_date=scheduled_date,
    )


def test_recipients_include_partners():
    match = _scheduled()
    emails = {pid: p.email for pid, p in PLAYERS.items()}
    assert notifications.recipients_for(match, PARTNERS, emails) == {ANN, BOB, CAT, DAN}
    assert notifications.recipients_for(match, {}, emails) == {ANN, CAT}


def test_scheduled_email_goes_to_all_four_players(email_client, no_sleep):
    sleep, sleeps = no_sleep
    report = notifications.notify_scheduled(
        _scheduled(), DOUBLES_LADDER, Actor(player_id=BOB), PARTNERS, PLAYERS, email_client, sleep=sleep
    )

    assert report.ok
    assert report.sent == 4
    assert sorted(email_client.recipients) == sorted(p.email for p in PLAYERS.values() if p.email)
    assert email_client.sent[0].subject == "Match scheduled: Ann & Bob vs Cat & Dan"
    assert "2026-02-10 19:30 UTC" in email_client.sent[0].text
    assert sleeps == [notifications.SEND_INTERVAL_SECONDS] * 4


def test_scheduled_email_opponent_per_side(email_client, no_sleep):
    sleep, _ = no_sleep
    notifications.notify_scheduled(
        _scheduled(), DOUBLES_LADDER, Actor(player_id=ANN), PARTNERS, PLAYERS, email_client, sleep=sleep
    )
    by_recipient = {m.to: m.text for m in email_client.sent}
    assert "Opponent: Cat & Dan" in by_recipient["bob@example.com"]
    assert "Opponent: Ann & Bob" in by_recipient["dan@example.com"]


def test_scheduled_email_escapes_names(email_client, no_sleep):
    sleep, _ = no_sleep
    players = dict(PLAYERS)
    players[ANN] = PlayerInfo(id=ANN, name="<b>Ann</b>", email="ann@example.com")
    notifications.notify_scheduled(
        _scheduled(), SINGLES_LADDER, Actor(player_id=ANN), {}, players, email_client, sleep=sleep
    )
    assert "&lt;b&gt;Ann&lt;/b&gt;" in email_client.sent[0].html


def test_only_participants_trigger_scheduled_email(email_client):
    with pytest.raises(Forbidden):
        notifications.notify_scheduled(
            _scheduled(), DOUBLES_LADDER, Actor(player_id=EVE), PARTNERS, PLAYERS, email_client
        )
    assert email_client.sent == []


def test_partner_without_email_cannot_trigger_scheduled_email(email_client):
    partners = {ANN: EVE, EVE: ANN, CAT: DAN, DAN: CAT}
    with pytest.raises(Forbidden):
        notifications.notify_scheduled(
            _scheduled(), DOUBLES_LADDER, Actor(player_id=EVE), partners, PLAYERS, email_client
        )
    assert email_client.sent == []

def test_unscheduled_match_not_notified(email_client):
    match = MatchRecord(id=9, ladder_id=1, challenger_id=ANN, challenged_id=CAT, status=ACCEPTED)
    with pytest.raises(InvalidTransition):
        notifications.notify_scheduled(match, DOUBLES_LADDER, Actor(player_id=ANN), {}, PLAYERS, email_client)


def test_partial_failure_reported(email_client, no_sleep):
    sleep, sleeps = no_sleep
    email_client.fail_for.add("dan@example.com")
    report = notifications.notify_scheduled(
        _scheduled(), DOUBLES_LADDER, Actor(player_id=ANN), PARTNERS, PLAYERS, email_client, sleep=sleep
    )

    assert not report.ok
    assert (report.sent, report.failed) == (3, 1)
    assert report.failed_recipients[0].startswith("dan@example.com (500)")
    warning = report.warning()
    assert isinstance(warning, PartialNotificationFailure)
    assert warning.message == "1 of 4 notification emails failed"
    assert len(sleeps) == 4


def test_round_start_digest_groups_across_ladders(email_client, no_sleep):
    sleep, _ = no_sleep
    matches = [
        _round_match(CAT, ANN, ladder_id=1),
        _round_match(EVE, ANN, ladder_id=2),
    ]
    ladders = {1: LadderInfo(id=1, name="Singles A"), 2: LadderInfo(id=2, name="Singles B")}
    report = notifications.notify_round_window(
        ROUND_START, matches, ladders, {}, PLAYERS, email_client, date(2026, 2, 2), sleep=sleep
    )

    by_recipient = {m.to: m for m in email_client.sent}
    assert set(by_recipient) == {"ann@example.com", "cat@example.com"}
    ann = by_recipient["ann@example.com"]
    assert ann.subject == "Pending matches for the new round"
    assert "vs Cat (Singles A | 2026-R3 | pending)" in ann.text
    assert "vs Eve (Singles B | 2026-R3 | pending)" in ann.text
    assert report.sent == 2


def test_mid_round_reminder_only_on_second_friday(email_client, no_sleep):
    sleep, _ = no_sleep
    matches = [_round_match(CAT, ANN, ladder_id=1)]
    ladders = {1: LadderInfo(id=1, name="Singles A")}

    quiet = notifications.notify_round_window(
        MID_ROUND_REMINDER, matches, ladders, {}, PLAYERS, email_client, date(2026, 2, 6), sleep=sleep
    )
    assert quiet.sent == 0
    assert email_client.sent == []

    report = notifications.notify_round_window(
        MID_ROUND_REMINDER, matches, ladders, {}, PLAYERS, email_client, date(2026, 2, 13), sleep=sleep
    )
    assert report.sent == 2
    assert email_client.sent[0].subject == "Reminder: pending matches this round"


def test_digest_skips_future_scheduled_and_flags_overdue(email_client, no_sleep):
    sleep, _ = no_sleep
    matches = [
        _round_match(CAT, ANN, ladder_id=1, status=SCHEDULED, scheduled_date=datetime(2026, 2, 14, 18, 0)),
        _round_match(DAN, BOB, ladder_id=1, status=SCHEDULED, scheduled_date=datetime(2026, 2, 11, 18, 0)),
    ]
    ladders = {1: LadderInfo(id=1, name="Singles A")}
    notifications.notify_round_window(
        MID_ROUND_REMINDER, matches, ladders, {}, PLAYERS, email_client, date(2026, 2, 13), sleep=sleep
    )

    assert sorted(email_client.recipients) == ["bob@example.com", "dan@example.com"]
    assert "scheduled (overdue) on 2026-02-11" in email_client.sent[0].text


def test_due_matches_window():
    open_match = _round_match(CAT, ANN, ladder_id=1)
    assert notifications.due_matches([open_match], date(2026, 2, 15)) == [open_match]
    assert notifications.due_matches([open_match], date(2026, 2, 16)) == []


def test_unknown_mode(email_client):
    with pytest.raises(ValueError):
        notifications.notify_round_window("weekly", [], {}, {}, PLAYERS, email_client, date(2026, 2, 2))


def test_round_digest_uses_each_ladders_partners(email_client, no_sleep):
    sleep, _ = no_sleep
    matches = [
        _round_match(CAT, ANN, ladder_id=1),
        _round_match(DAN, ANN, ladder_id=2),
    ]
    ladders = {1: DOUBLES_LADDER, 2: SINGLES_LADDER}
    partners_by_ladder = {1: {ANN: BOB, CAT: EVE}, 2: {ANN: None, DAN: None}}
    report = notifications.notify_round_window(
        ROUND_START, matches, ladders, partners_by_ladder, PLAYERS, email_client, date(2026, 2, 2), sleep=sleep
    )

    texts = {m.to: m.text for m in email_client.sent}
    assert set(texts) == {"ann@example.com", "bob@example.com", "cat@example.com", "dan@example.com"}
    assert "vs Cat & Eve (Mixed Doubles | 2026-R3 | pending)" in texts["bob@example.com"]
    assert "vs Dan (Singles | 2026-R3 | pending)" in texts["ann@example.com"]
    assert "vs Ann (Singles | 2026-R3 | pending)" in texts["dan@example.com"]
    assert "vs Ann & Bob (Mixed Doubles | 2026-R3 | pending)" in texts["cat@example.com"]
    assert report.sent == 4

"""
Round notifications: the per-match "scheduled" email and the round-start /
mid-round reminder digests.

Delivery goes through any object with a send(EmailMessage) -> SendResult
method (email_integration.ResendClient in production). Every send is
followed by a SEND_INTERVAL_SECONDS pause to stay under the provider's
request rate cap.
"""

import logging
import time
from dataclasses import dataclass, field

from markupsafe import escape

from email_integration import EmailMessage
from errors import Forbidden, InvalidTransition, PartialNotificationFailure
from membership import team_name
from records import SCHEDULED, OPEN_STATUSES, SINGLES
from rounds import (
    ROUND_START, MID_ROUND_REMINDER, classify_notification_window, is_in_window,
)
from utils import format_day, to_naive_utc

logger = logging.getLogger(__name__)

SEND_INTERVAL_SECONDS = 0.55
SCHEDULED_MODE = "scheduled_match"

SUBJECTS = {
    ROUND_START: "Pending matches for the new round",
    MID_ROUND_REMINDER: "Reminder: pending matches this round",
}


@dataclass
class NotificationReport:
    mode: str
    sent: int = 0
    failed: int = 0
    failed_recipients: list = field(default_factory=list)

    @property
    def ok(self):
        return self.failed == 0

    def warning(self):
        """PartialNotificationFailure when any recipient failed, else None"""
        if self.ok:
            return None
        return PartialNotificationFailure(self)

    def to_dict(self):
        return {
            "ok": self.ok,
            "mode": self.mode,
            "sent": self.sent,
            "failed": self.failed,
            "failed_recipients": list(self.failed_recipients),
        }


def _team(primary_id, partner_by_player):
    partner_id = partner_by_player.get(primary_id)
    return [pid for pid in (primary_id, partner_id) if pid is not None]


def involved_players(match, partner_by_player):
    """Both teams of a match, challenger side first, without duplicates"""
    ids = _team(match.challenger_id, partner_by_player) + _team(match.challenged_id, partner_by_player)
    return list(dict.fromkeys(ids))


def recipients_for(match, partner_by_player, email_by_player):
    """Ids of every player on either team who has an email address"""
    return {pid for pid in involved_players(match, partner_by_player) if email_by_player.get(pid)}


def _names(players):
    return {pid: p.name for pid, p in players.items() if p.name}


def _deliver(client, report, recipient, subject, html, text, sleep):
    result = client.send(EmailMessage(to=recipient.email, subject=subject, html=html, text=text))
    if result.ok:
        report.sent += 1
    else:
        report.failed += 1
        report.failed_recipients.append(f"{recipient.email} ({result.status}): {result.body}")
        logger.error("[EMAIL ERROR] %s email to %s failed with status %s", report.mode, recipient.email, result.status)
    sleep(SEND_INTERVAL_SECONDS)


def _scheduled_label(scheduled_date):
    return f"{to_naive_utc(scheduled_date).strftime('%Y-%m-%d %H:%M')} UTC"


def notify_scheduled(match, ladder, actor, partner_by_player, players, client, sleep=time.sleep):
    """
    Email every player of a just-scheduled match.

    Only a player of the match with an email address may trigger this send.

    Args:
        match: MatchRecord in status scheduled
        ladder: LadderInfo of the match
        actor: Actor who scheduled the match
        partner_by_player: primary id -> partner id
        players: player id -> PlayerInfo
        client: email client with send(EmailMessage)

    Returns:
        NotificationReport
    """
    if match.status != SCHEDULED or match.scheduled_date is None:
        raise InvalidTransition("Match is not scheduled")

    involved = involved_players(match, partner_by_player)
    email_by_player = {pid: p.email for pid, p in players.items()}
    if actor is None or actor.player_id not in recipients_for(match, partner_by_player, email_by_player):
        raise Forbidden("Only participants with an email address can notify this match")

    ladder_type = ladder.type if ladder else SINGLES
    ladder_name = ladder.display_name if ladder else "Ladder"
    names = _names(players)
    team_a = team_name(match.challenger_id, ladder_type, partner_by_player, names)
    team_b = team_name(match.challenged_id, ladder_type, partner_by_player, names)
    team_a_players = _team(match.challenger_id, partner_by_player)
    when = _scheduled_label(match.scheduled_date)
    round_part = f" | {match.round_label}" if match.round_label else ""
    subject = f"Match scheduled: {team_a} vs {team_b}"

    report = NotificationReport(mode=SCHEDULED_MODE)
    for player_id in involved:
        recipient = players.get(player_id)
        if recipient is None or not recipient.email:
            continue
        opponent = team_b if player_id in team_a_players else team_a
        greeting = recipient.name or "there"
        html = f"""
<div style="font-family: Arial, sans-serif; line-height: 1.5;">
  <p>Hi {escape(greeting)},</p>
  <p>Your match has been scheduled.</p>
  <p><strong>{escape(team_a)}</strong> vs <strong>{escape(team_b)}</strong></p>
  <p>Ladder: {escape(ladder_name)}{escape(round_part)}</p>
  <p>Opponent: <strong>{escape(opponent)}</strong></p>
  <p>When: <strong>{when}</strong></p>
  <p>You can reschedule or update the score in SportsLadder.</p>
</div>
"""
        text = f"""Hi {greeting},

Your match has been scheduled.
{team_a} vs {team_b}
Ladder: {ladder_name}{round_part}
Opponent: {opponent}
When: {when}

You can reschedule or update the score in SportsLadder."""
        _deliver(client, report, recipient, subject, html, text, sleep)

    logger.info("[EMAIL] Match %s scheduled: %d sent, %d failed", match.id, report.sent, report.failed)
    return report


def due_matches(matches, today):
    """
    Open matches whose round window contains today. Scheduled matches only
    count once their date has passed (overdue).
    """
    due = []
    for match in matches:
        if match.status not in OPEN_STATUSES or not is_in_window(match, today):
            continue
        if match.status == SCHEDULED:
            if match.scheduled_date is None or to_naive_utc(match.scheduled_date).date() >= today:
                continue
        due.append(match)
    return due


def _status_label(status):
    return "scheduled (overdue)" if status == SCHEDULED else status


def _digest(name, items):
    html_items = []
    text_items = []
    for item in items:
        round_part = f" | {item['round_label']}" if item["round_label"] else ""
        status = _status_label(item["status"])
        day = format_day(item["scheduled_date"]) if item["scheduled_date"] else None
        html_when = f" | {day}" if day else ""
        text_when = f" on {day}" if day else ""
        html_items.append(
            f"<li>vs <strong>{escape(item['opponent'])}</strong> "
            f"({escape(item['ladder_name'])}{escape(round_part)} | {status}{html_when})</li>"
        )
        text_items.append(f"- vs {item['opponent']} ({item['ladder_name']}{round_part} | {status}{text_when})")

    html = f"""
<div style="font-family: Arial, sans-serif; line-height: 1.5;">
  <p>Hi {escape(name)},</p>
  <p>Here are your pending matches:</p>
  <ul>{"".join(html_items)}</ul>
  <p>Please schedule your matches in the SportsLadder app.</p>
</div>
"""
    text = (
        f"Hi {name},\n\nYou have matches to schedule or complete:\n"
        + "\n".join(text_items)
        + "\n\nPlease schedule your matches in the SportsLadder app."
    )
    return html, text


def notify_round_window(mode, matches, ladders, partners_by_ladder, players, client, today, sleep=time.sleep):
    """
    Send the round-start or mid-round reminder digest.

    Matches are grouped by ladder; a ladder takes part only when its round
    window classifies today as `mode`. Each recipient gets one email listing
    all of their due matches across ladders.

    Args:
        mode: rounds.ROUND_START or rounds.MID_ROUND_REMINDER
        matches: candidate MatchRecords (any status, filtered here)
        ladders: ladder id -> LadderInfo
        partners_by_ladder: ladder id -> {primary id: partner id}
        players: player id -> PlayerInfo
        client: email client with send(EmailMessage)
        today: date the job runs for

    Returns:
        NotificationReport
    """
    if mode not in SUBJECTS:
        raise ValueError(f"Unknown notification mode: {mode}")

    report = NotificationReport(mode=mode)
    by_ladder = {}
    for match in due_matches(matches, today):
        if match.ladder_id is None:
            continue
        by_ladder.setdefault(match.ladder_id, []).append(match)

    if not by_ladder:
        logger.info("[EMAIL] %s: no matches due on %s", mode, today)
        return report

    names = _names(players)
    items_by_recipient = {}
    for ladder_id, ladder_matches in by_ladder.items():
        round_start = next((m.round_start_date for m in ladder_matches if m.round_start_date), None)
        if round_start is None or classify_notification_window(round_start, today) != mode:
            continue
        round_label = next((m.round_label for m in ladder_matches if m.round_label), None)
        ladder = ladders.get(ladder_id)
        ladder_name = ladder.display_name if ladder else "Ladder"
        ladder_type = ladder.type if ladder else SINGLES
        partner_by_player = partners_by_ladder.get(ladder_id, {})

        for match in ladder_matches:
            team_a = team_name(match.challenger_id, ladder_type, partner_by_player, names)
            team_b = team_name(match.challenged_id, ladder_type, partner_by_player, names)
            sides = (
                (_team(match.challenger_id, partner_by_player), team_b),
                (_team(match.challenged_id, partner_by_player), team_a),
            )
            for team_players, opponent in sides:
                for player_id in team_players:
                    items_by_recipient.setdefault(player_id, []).append({
                        "opponent": opponent,
                        "ladder_name": ladder_name,
                        "round_label": round_label,
                        "status": match.status,
                        "scheduled_date": match.scheduled_date,
                    })

    for player_id, items in items_by_recipient.items():
        recipient = players.get(player_id)
        if recipient is None or not recipient.email:
            continue
        html, text = _digest(recipient.name or "there", items)
        _deliver(client, report, recipient, SUBJECTS[mode], html, text, sleep)

    if report.ok:
        logger.info("[EMAIL] %s: %d emails sent", mode, report.sent)
    else:
        logger.warning("[EMAIL] %s", report.warning().message)
    return report

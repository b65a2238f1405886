"""
Scheduled Tasks for the Club Ladder Hub
Handles the round calendar jobs:
- Round start emails (Monday the round opens)
- Mid-round reminders (second Friday of the round)
- Closing matches of rounds that have ended
- Generating the pending matches of a new round

Run this script periodically (e.g., via cron or run_scheduled_tasks.py)
"""

import logging

from app import app
from ladder_store import ladders_for_club
from match_service import close_expired_rounds, generate_round, send_round_notifications
from models import Club
from rounds import ROUND_START, MID_ROUND_REMINDER, round_for
from utils import utcnow

logger = logging.getLogger(__name__)


def send_round_start_emails(today=None, client=None):
    """Digest of pending matches for every ladder whose round opens today"""
    with app.app_context():
        report = send_round_notifications(ROUND_START, today=today, client=client)
        logger.info("[SCHEDULED TASK] Round start emails: %d sent, %d failed", report.sent, report.failed)
        return report


def send_mid_round_reminders(today=None, client=None):
    """Reminder digest on the second Friday of the round"""
    with app.app_context():
        report = send_round_notifications(MID_ROUND_REMINDER, today=today, client=client)
        logger.info("[SCHEDULED TASK] Mid-round reminders: %d sent, %d failed", report.sent, report.failed)
        return report


def close_expired_rounds_task(today=None):
    with app.app_context():
        closed = close_expired_rounds(today=today)
        logger.info("[SCHEDULED TASK] Closed %d unplayed matches", closed)
        return closed


def generate_round_matches_task(today=None):
    """
    Create the matches of the current round on every ladder. Only does work
    on the day a round starts; ladders that already have matches for the
    round are skipped.
    """
    today = today or utcnow().date()
    if round_for(today).start_date != today:
        return 0

    created = 0
    with app.app_context():
        for club in Club.query.all():
            for ladder in ladders_for_club(club.id):
                created += len(generate_round(ladder.id, today=today))
    logger.info("[SCHEDULED TASK] Generated %d matches for %s", created, round_for(today).label)
    return created


def run_daily_round_jobs(today=None):
    """Everything the round calendar needs once per day, in order"""
    close_expired_rounds_task(today)
    generate_round_matches_task(today)
    send_round_start_emails(today)
    send_mid_round_reminders(today)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    logger.info("[SCHEDULED TASKS] Starting round jobs...")
    run_daily_round_jobs()
    logger.info("[SCHEDULED TASKS] Completed!")

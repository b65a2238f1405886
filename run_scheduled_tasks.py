"""
Background Task Runner for the Club Ladder Hub
Runs the round jobs once a day while the app is running.

This script runs in the background alongside the main Flask app.
"""

import logging
import time
import threading
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
import requests

from scheduled_tasks import run_daily_round_jobs

logger = logging.getLogger(__name__)

DAILY_RUN_HOUR = 8


def is_due(hour):
    return hour == DAILY_RUN_HOUR


def run_hourly_tasks():
    """Checks every hour; the round jobs run at 08:00 (rounds open Monday 08:00)"""
    while True:
        try:
            if is_due(datetime.now().hour):
                logger.info("[BACKGROUND TASKS] Running daily round jobs...")
                run_daily_round_jobs()
        except (SQLAlchemyError, requests.RequestException) as e:
            logger.error("[BACKGROUND TASKS] Scheduled task failed: %s", e)

        # Wait 1 hour
        time.sleep(3600)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    logger.info("[BACKGROUND TASKS] Starting round job runner...")
    logger.info("[BACKGROUND TASKS] Round jobs: daily at %02d:00", DAILY_RUN_HOUR)

    # Run in background thread
    task_thread = threading.Thread(target=run_hourly_tasks, daemon=True)
    task_thread.start()

    # Keep main thread alive
    try:
        while True:
            time.sleep(60)
    except KeyboardInterrupt:
        logger.info("[BACKGROUND TASKS] Shutting down...")

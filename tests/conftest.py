"""
Shared pytest configuration.

Points the app at an in-memory SQLite database before it is imported, and
provides factories for players, clubs, ladders and memberships plus a fake
email client.
"""

import itertools
import os
import secrets

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["TESTING_MODE"] = "false"
for key in ("CRON_SECRET", "RESEND_API_KEY", "ROUND_ANCHOR_DATE"):
    os.environ.pop(key, None)

import pytest

from app import app as flask_app
from email_integration import SendResult
from models import db, Player, Club, Ladder, LadderMembership
from records import actor_from_player


class FakeEmailClient:
    """Records every message; addresses in fail_for get a 500 result"""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    def send(self, message):
        self.sent.append(message)
        if message.to in self.fail_for:
            return SendResult(False, 500, "server error")
        return SendResult(True, 200, '{"id": "test"}')

    @property
    def recipients(self):
        return [m.to for m in self.sent]


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture
def no_sleep():
    calls = []
    return calls.append, calls


@pytest.fixture
def app_ctx():
    """App context with freshly created tables"""
    flask_app.config["TESTING"] = True
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app_ctx):
    return app_ctx.test_client()


@pytest.fixture
def make_club(app_ctx):
    counter = itertools.count(1)

    def _make(name=None):
        club = Club(name=name or f"Club {next(counter)}", city="Utrecht", sport="padel")
        db.session.add(club)
        db.session.commit()
        return club

    return _make


@pytest.fixture
def make_player(app_ctx):
    counter = itertools.count(1)

    def _make(name=None, clubs=None, email=None, is_admin=False, is_super_admin=False, with_email=True):
        n = next(counter)
        player = Player(
            name=name or f"Player {n}",
            email=(email or f"player{n}@example.com") if with_email else None,
            clubs=list(clubs or []),
            is_admin=is_admin,
            is_super_admin=is_super_admin,
            access_token=secrets.token_urlsafe(16),
            wins=0,
            losses=0,
        )
        db.session.add(player)
        db.session.commit()
        return player

    return _make


@pytest.fixture
def make_ladder(app_ctx):
    def _make(club, name="Open", type="singles", swap_on_upset=True):
        ladder = Ladder(club_id=club.id, name=name, type=type, swap_on_upset=swap_on_upset)
        db.session.add(ladder)
        db.session.commit()
        return ladder

    return _make


@pytest.fixture
def add_member(app_ctx):
    """Insert a membership row directly, bypassing the join rules"""
    def _add(ladder, player, rank, partner=None, match_frequency=1):
        membership = LadderMembership(
            ladder_id=ladder.id,
            player_id=player.id,
            partner_id=partner.id if partner else None,
            rank=rank,
            match_frequency=match_frequency,
        )
        db.session.add(membership)
        db.session.commit()
        return membership

    return _add


@pytest.fixture
def actor_of():
    return actor_from_player

from flask_sqlalchemy import SQLAlchemy

from utils import utcnow

db = SQLAlchemy()


class Player(db.Model):
    """A registered player; per-ladder rank lives on LadderMembership"""
    __tablename__ = 'players'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100))
    email = db.Column(db.String(120), unique=True, index=True)  # Looked up case-insensitively
    phone = db.Column(db.String(20))
    gender = db.Column(db.String(10))
    clubs = db.Column(db.JSON, default=list)  # Club ids the player belongs to

    is_admin = db.Column(db.Boolean, default=False)  # Club admin for every club in `clubs`
    is_super_admin = db.Column(db.Boolean, default=False)

    avatar_url = db.Column(db.String(500))
    access_token = db.Column(db.String(64), unique=True, index=True)  # Unique token for secure access

    # Match statistics
    wins = db.Column(db.Integer, default=0)
    losses = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=utcnow)


class Club(db.Model):
    __tablename__ = 'clubs'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    city = db.Column(db.String(100))
    sport = db.Column(db.String(50))
    description = db.Column(db.Text)
    address = db.Column(db.String(200))
    email = db.Column(db.String(120))
    phone = db.Column(db.String(20))
    website = db.Column(db.String(200))

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class Ladder(db.Model):
    __tablename__ = 'ladders'

    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    type = db.Column(db.String(10), nullable=False, default="singles")  # 'singles' or 'doubles'

    # Match rules shown to players (minutes)
    warm_up_time = db.Column(db.Integer, default=10)
    play_time = db.Column(db.Integer, default=60)

    swap_on_upset = db.Column(db.Boolean, default=True)  # Winning challenger takes the defender's rank

    created_at = db.Column(db.DateTime, default=utcnow)


class LadderMembership(db.Model):
    """A player's (or doubles team's) slot in one ladder"""
    __tablename__ = 'ladder_memberships'
    __table_args__ = (
        db.UniqueConstraint('ladder_id', 'player_id', name='uq_membership_ladder_player'),
    )

    id = db.Column(db.Integer, primary_key=True)
    ladder_id = db.Column(db.Integer, nullable=False, index=True)
    player_id = db.Column(db.Integer, nullable=False, index=True)  # Primary player, the ranking key
    partner_id = db.Column(db.Integer, nullable=True)  # Doubles only
    rank = db.Column(db.Integer, nullable=True)  # 1..N within the ladder
    match_frequency = db.Column(db.Integer, default=1)  # Matches per round, 0..4
    team_avatar_url = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    ladder_id = db.Column(db.Integer, nullable=False, index=True)

    # Round window ("2026-R6", Monday start to Sunday end)
    round_label = db.Column(db.String(20), index=True)
    round_start_date = db.Column(db.Date, nullable=True)
    round_end_date = db.Column(db.Date, nullable=True)

    # Primary player ids of each side
    challenger_id = db.Column(db.Integer, nullable=False)
    challenged_id = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), default="pending")  # pending, accepted, scheduled, completed, cancelled, not_played
    scheduled_date = db.Column(db.DateTime, nullable=True)  # Naive UTC

    # Result (winner_id NULL on a completed match means a draw)
    winner_id = db.Column(db.Integer, nullable=True)
    score = db.Column(db.String(20))  # "6-4", challenger first
    player1_score = db.Column(db.Integer, nullable=True)
    player2_score = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(200))

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)


class LadderRankHistory(db.Model):
    """Rank snapshot written whenever a membership's rank is set or changed"""
    __tablename__ = 'ladder_rank_history'

    id = db.Column(db.Integer, primary_key=True)
    ladder_id = db.Column(db.Integer, nullable=False, index=True)
    membership_id = db.Column(db.Integer, nullable=True, index=True)
    player_id = db.Column(db.Integer, nullable=True)
    partner_id = db.Column(db.Integer, nullable=True)
    round_label = db.Column(db.String(20))
    rank = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)

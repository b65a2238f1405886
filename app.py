from flask import Flask, request
import logging
import os
import secrets
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError
from models import db
from errors import LadderError
import ladder_store
import match_service
from rounds import ROUND_START, MID_ROUND_REMINDER
from utils import parse_date

app = Flask(__name__)

# Ensure .env values override any existing process variables
load_dotenv(override=True)

# Production-ready secret key (CRITICAL: Set SECRET_KEY in environment variables)
app.secret_key = os.environ.get("SECRET_KEY", secrets.token_hex(32))

# Database Configuration
# Supports both DATABASE_URL (Render/Heroku) and DATABASE_URI (legacy)
database_url = os.environ.get("DATABASE_URL") or os.environ.get("DATABASE_URI")

# Fallback to SQLite only if no database URL is provided
if not database_url:
    database_url = "sqlite:///instance/ladder.db"
    logging.warning("No DATABASE_URL found, using SQLite fallback")

# Fix for Render: postgres:// -> postgresql://
if database_url.startswith("postgres://"):
    database_url = database_url.replace("postgres://", "postgresql://", 1)

app.config["SQLALCHEMY_DATABASE_URI"] = database_url
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
if database_url.startswith("postgresql://"):
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_recycle": 300,     # Recycle connections after 5 minutes
        "pool_size": 3,          # Conservative for free tier
        "max_overflow": 2,
        "pool_timeout": 30,
        "connect_args": {"connect_timeout": 10},
    }

db.init_app(app)

CRON_SECRET = os.environ.get("CRON_SECRET", "")
BASE_URL = os.environ.get("BASE_URL", "http://localhost:5000").rstrip("/")

# Older cron jobs post the mode names used by the first email function
NOTIFICATION_MODE_ALIASES = {
    "start": ROUND_START,
    "second_friday": MID_ROUND_REMINDER,
    ROUND_START: ROUND_START,
    MID_ROUND_REMINDER: MID_ROUND_REMINDER,
}


def _payload():
    return request.get_json(silent=True) or request.form.to_dict()


def _required_int(payload, key):
    try:
        return int(payload[key])
    except (KeyError, TypeError, ValueError):
        raise LadderError(f"'{key}' must be a whole number")


def _optional_int(payload, key):
    value = payload.get(key)
    if value in (None, ""):
        return None
    return _required_int(payload, key)


def _ladder_json(ladder):
    return {
        "id": ladder.id,
        "club_id": ladder.club_id,
        "name": ladder.name,
        "type": ladder.type,
        "warm_up_time": ladder.warm_up_time,
        "play_time": ladder.play_time,
        "swap_on_upset": ladder.swap_on_upset,
    }


def _match_json(match):
    return {
        "id": match.id,
        "ladder_id": match.ladder_id,
        "round_label": match.round_label,
        "status": match.status,
        "challenger_id": match.challenger_id,
        "challenged_id": match.challenged_id,
        "scheduled_date": match.scheduled_date.isoformat() if match.scheduled_date else None,
        "winner_id": match.winner_id,
        "score": match.score,
    }


@app.route("/health")
def health():
    """Fast health check endpoint for deployment monitoring"""
    return {"status": "ok"}, 200


@app.route("/register", methods=["POST"])
def register():
    """Create a player and hand back their personal access link"""
    player = ladder_store.register_player(_payload())
    return {
        "success": True,
        "message": f"Welcome {player.name}! Keep your access link safe.",
        "player_id": player.id,
        "access_link": f"{BASE_URL}/my-matches/{player.access_token}",
    }, 201


@app.route("/ladders/<int:ladder_id>/rankings")
def ladder_rankings(ladder_id):
    ladder = ladder_store.get_ladder(ladder_id)
    return {
        "success": True,
        "ladder": _ladder_json(ladder),
        "rankings": ladder_store.ladder_rankings(ladder_id),
    }, 200


@app.route("/ladders/<int:ladder_id>/predicted-rank/<int:player_id>")
def predicted_rank(ladder_id, player_id):
    prediction = match_service.predicted_rank_for(ladder_id, player_id, request.args.get("round"))
    return {"success": True, **prediction}, 200


@app.route("/teams/<int:membership_id>/history")
def team_history(membership_id):
    return {"success": True, "history": ladder_store.position_history(membership_id)}, 200


@app.route("/ladders/<int:ladder_id>/join/<token>", methods=["POST"])
def join_ladder(ladder_id, token):
    actor = ladder_store.actor_for_token(token)
    payload = _payload()
    membership = ladder_store.join_ladder(
        actor,
        ladder_id,
        partner_id=_optional_int(payload, "partner_id"),
        match_frequency=payload.get("match_frequency", 1),
        player_id=_optional_int(payload, "player_id"),
        team_avatar_url=payload.get("team_avatar_url") or None,
    )
    return {
        "success": True,
        "message": f"Joined the ladder at rank #{membership.rank}",
        "membership_id": membership.id,
        "rank": membership.rank,
    }, 201


@app.route("/memberships/<int:membership_id>/leave/<token>", methods=["POST"])
def leave_ladder(membership_id, token):
    actor = ladder_store.actor_for_token(token)
    ladder_store.leave_ladder(actor, membership_id)
    return {"success": True, "message": "Left the ladder"}, 200


@app.route("/memberships/<int:membership_id>/update/<token>", methods=["POST"])
def update_membership(membership_id, token):
    actor = ladder_store.actor_for_token(token)
    payload = _payload()
    changes = {}
    if "partner_id" in payload:
        changes["partner_id"] = _optional_int(payload, "partner_id")
    if "match_frequency" in payload:
        changes["match_frequency"] = payload["match_frequency"]
    if "team_avatar_url" in payload:
        changes["team_avatar_url"] = payload["team_avatar_url"]
    membership = ladder_store.update_membership(actor, membership_id, **changes)
    return {
        "success": True,
        "message": "Membership updated",
        "partner_id": membership.partner_id,
        "match_frequency": membership.match_frequency,
        "team_avatar_url": membership.team_avatar_url,
    }, 200


@app.route("/my-matches/<token>")
def my_matches(token):
    """Secure token-based access to a player's matches"""
    actor = ladder_store.actor_for_token(token)
    return {"success": True, **match_service.matches_for_player(actor)}, 200


@app.route("/challenge/<token>", methods=["POST"])
def challenge(token):
    actor = ladder_store.actor_for_token(token)
    payload = _payload()
    match = match_service.create_challenge(
        actor, _required_int(payload, "ladder_id"), _required_int(payload, "opponent_id"),
    )
    return {"success": True, "message": "Challenge sent", "match": _match_json(match)}, 201


@app.route("/accept-challenge/<token>", methods=["POST"])
def accept_challenge(token):
    actor = ladder_store.actor_for_token(token)
    match = match_service.accept_challenge(actor, _required_int(_payload(), "match_id"))
    return {"success": True, "message": "Challenge accepted", "match": _match_json(match)}, 200


@app.route("/cancel-match/<token>", methods=["POST"])
def cancel_match(token):
    actor = ladder_store.actor_for_token(token)
    match = match_service.cancel_match(actor, _required_int(_payload(), "match_id"))
    return {"success": True, "message": "Match cancelled", "match": _match_json(match)}, 200


@app.route("/submit-score/<token>", methods=["POST"])
def submit_score(token):
    actor = ladder_store.actor_for_token(token)
    payload = _payload()
    result = match_service.submit_match_score(
        actor, _required_int(payload, "match_id"), payload.get("score1"), payload.get("score2"),
    )
    return {
        "success": True,
        "message": result.expected_position,
        "swapped": result.swapped,
        "match": _match_json(result.match),
    }, 200


@app.route("/schedule-match/<token>", methods=["POST"])
def schedule_match(token):
    actor = ladder_store.actor_for_token(token)
    payload = _payload()
    result = match_service.schedule_match(actor, _required_int(payload, "match_id"), payload.get("scheduled_date"))
    body = {"success": True, "message": "Match scheduled", "match": _match_json(result.match)}
    if result.warning:
        body["warning"] = result.warning.message
        body["failed_recipients"] = result.report.failed_recipients
    return body, 200


@app.route("/admin/ladders/<int:ladder_id>/reorder/<token>", methods=["POST"])
def reorder_ladder(ladder_id, token):
    actor = ladder_store.actor_for_token(token)
    payload = _payload()
    changes = ladder_store.reorder_ladder(
        actor, ladder_id, _required_int(payload, "membership_id"), _required_int(payload, "rank"),
    )
    return {
        "success": True,
        "message": f"{len(changes)} ranks updated",
        "changes": [{"membership_id": m, "rank": r} for m, r in changes],
    }, 200


@app.route("/admin/ladders/<int:ladder_id>/repair/<token>", methods=["POST"])
def repair_ladder(ladder_id, token):
    actor = ladder_store.actor_for_token(token)
    changes = ladder_store.repair_ladder_ranks(ladder_id, actor=actor)
    return {
        "success": True,
        "message": f"{len(changes)} ranks repaired" if changes else "Ladder ranks are consistent",
        "changes": [{"membership_id": m, "rank": r} for m, r in changes],
    }, 200


@app.route("/admin/clubs/<token>", methods=["POST"])
def create_club(token):
    actor = ladder_store.actor_for_token(token)
    club = ladder_store.create_club(actor, _payload())
    return {"success": True, "message": f"Club {club.name} created", "club_id": club.id}, 201


@app.route("/admin/clubs/<int:club_id>/ladders/<token>", methods=["POST"])
def create_ladder(club_id, token):
    actor = ladder_store.actor_for_token(token)
    ladder = ladder_store.create_ladder(actor, club_id, _payload())
    return {"success": True, "message": f"Ladder {ladder.name} created", "ladder": _ladder_json(ladder)}, 201


@app.route("/players/<int:player_id>/delete/<token>", methods=["POST"])
def delete_player(player_id, token):
    actor = ladder_store.actor_for_token(token)
    ladder_store.delete_player(actor, player_id)
    return {"success": True, "message": "Player deleted"}, 200


@app.route("/tasks/round-emails", methods=["POST"])
def round_emails():
    """Batch round emails, triggered by an external cron job"""
    if CRON_SECRET and request.headers.get("X-Cron-Secret") != CRON_SECRET:
        return {"success": False, "message": "Unauthorized"}, 401

    payload = _payload()
    mode = NOTIFICATION_MODE_ALIASES.get(payload.get("mode") or "start")
    if mode is None:
        return {"success": False, "message": f"Unknown mode: {payload.get('mode')}"}, 400

    report = match_service.send_round_notifications(mode, today=parse_date(payload.get("today")))
    body = {"success": True, **report.to_dict()}
    if not report.ok:
        body["warning"] = report.warning().message
    return body, 200


# Error Handlers
@app.errorhandler(LadderError)
def ladder_error(e):
    return {"success": False, "message": e.message}, e.status_code


@app.errorhandler(404)
def page_not_found(e):
    """Handle 404 errors"""
    return {"success": False, "message": "Not found"}, 404


@app.errorhandler(500)
def internal_server_error(e):
    """Handle 500 errors"""
    db.session.rollback()
    return {"success": False, "message": "Internal server error"}, 500


# Production Configuration
def setup_production():
    """Setup production-specific configurations"""
    if not app.debug:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        )
        app.logger.setLevel(logging.INFO)
        app.logger.info('Club Ladder Hub startup')


setup_production()


# Lazy database initialization - only run when needed
def init_db():
    """Initialize database tables if needed (safe for existing databases)"""
    try:
        from sqlalchemy import inspect
        inspector = inspect(db.engine)
        existing_tables = inspector.get_table_names()

        # Only create tables if database is empty
        if not existing_tables:
            db.create_all()
            app.logger.info("Database tables created")
        else:
            app.logger.info(f"Database already initialized with {len(existing_tables)} tables")
        return True
    except SQLAlchemyError as e:
        app.logger.error(f"Database initialization failed: {e}")
        app.logger.error("Application will continue but database features may not work")
        return False


# Initialize DB on first request (non-blocking for health checks)
_db_initialized = False
_db_available = True


@app.before_request
def ensure_db_initialized():
    """Ensure database is initialized before processing requests"""
    global _db_initialized, _db_available

    # Skip health check - it must work without database
    if request.endpoint == 'health':
        return

    if not _db_initialized:
        _db_available = init_db()
        _db_initialized = True

        if not _db_available:
            app.logger.warning("Database not available - some features will not work")


if __name__ == "__main__":
    # Development mode only
    port = int(os.environ.get("PORT") or 5000)
    debug = os.environ.get("FLASK_ENV") == "development"
    app.run(host="0.0.0.0", port=port, debug=debug)

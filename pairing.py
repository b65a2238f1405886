import logging
import random

from records import MatchRecord, DOUBLES, PENDING
from ranking import ordered

logger = logging.getLogger(__name__)

RANK_DISTANCE = 2


def generate_round_matches(ladder, memberships, round, rng=None, already_played=None):
    """
    Generates the pending matches for one ladder round:
    - Walks members in rank order, each asking for up to match_frequency opponents
    - Opponents are within RANK_DISTANCE ranks and still below their own frequency
    - A pair is never matched twice in the same round (or again if in already_played)
    - Doubles ladders only pair memberships that have a partner
    - The numerically worse-ranked side is the challenger

    Args:
        ladder: LadderInfo
        memberships: MembershipRow records of the ladder
        round: rounds.Round the matches belong to
        rng: random.Random used for opponent choice (module random if None)
        already_played: set of (low_id, high_id) player pairs to avoid

    Returns:
        list of pending MatchRecord
    """
    rng = rng or random
    members = [m for m in ordered(memberships) if m.player_id is not None and m.rank is not None]
    if ladder.type == DOUBLES:
        members = [m for m in members if m.partner_id is not None]

    if len(members) < 2:
        logger.info("[PAIRING] Ladder %s: fewer than 2 eligible members, no matches generated", ladder.id)
        return []

    paired = set(already_played or ())
    scheduled_count = {m.player_id: 0 for m in members}
    matches = []
    log_lines = [f"=== {round.label} PAIRING FOR {ladder.display_name} ==="]

    for member in members:
        wanted = max(0, member.match_frequency)
        candidates = [
            other for other in members
            if other.player_id != member.player_id
            and abs(other.rank - member.rank) <= RANK_DISTANCE
        ]

        while scheduled_count[member.player_id] < wanted and candidates:
            opponent = rng.choice(candidates)
            candidates.remove(opponent)

            pair = (min(member.player_id, opponent.player_id), max(member.player_id, opponent.player_id))
            if pair in paired:
                continue
            if scheduled_count[opponent.player_id] >= max(0, opponent.match_frequency):
                continue

            if member.rank > opponent.rank:
                challenger, challenged = member, opponent
            else:
                challenger, challenged = opponent, member

            matches.append(MatchRecord(
                id=None,
                ladder_id=ladder.id,
                challenger_id=challenger.player_id,
                challenged_id=challenged.player_id,
                status=PENDING,
                round_label=round.label,
                round_start_date=round.start_date,
                round_end_date=round.end_date,
            ))
            paired.add(pair)
            scheduled_count[member.player_id] += 1
            scheduled_count[opponent.player_id] += 1
            log_lines.append(f"#{challenger.rank:2d} challenges #{challenged.rank:2d}")

    unmatched = [m.rank for m in members if scheduled_count[m.player_id] == 0 and m.match_frequency > 0]
    if unmatched:
        log_lines.append(f"No opponent available for ranks: {', '.join(str(r) for r in unmatched)}")
    log_lines.append(f"Total matches: {len(matches)}")
    logger.info("[PAIRING] %s", "\n".join(log_lines))
    return matches

"""
Projected post-round rank for display next to the ladder table.

Nothing here writes ranks; the estimate is recomputed from the round's
completed matches every time it is shown.
"""

from records import COMPLETED, PENDING
from utils import half_up


def _team_key(player_id, primary_by_player):
    if primary_by_player:
        return primary_by_player.get(player_id, player_id)
    return player_id


def predict(player_id, ladder_id, round_label, completed_matches, rank_by_player, primary_by_player=None):
    """
    Estimate where a player (or their team) ends up after this round.

    - No completed match this round: None
    - Every match won: best rank among beaten higher-ranked opponents, else current rank
    - Every match lost: worst rank among lower-ranked opponents lost to, else current rank
    - Mixed results with evidence on both sides: half-up rounded average of
      (mean beaten rank, mean lost-to rank)
    - Anything else: current rank

    A draw counts as played but is neither a win nor a loss.
    """
    key = _team_key(player_id, primary_by_player)
    current = rank_by_player.get(key)

    played = [
        m for m in completed_matches
        if m.status == COMPLETED
        and m.ladder_id in (ladder_id, None)
        and m.round_label == round_label
        and key in m.participant_ids
    ]
    if not played:
        return None

    wins = losses = 0
    higher_beaten = []
    lower_lost = []
    for match in played:
        opponent_rank = rank_by_player.get(match.opponent_of(key))
        if match.winner_id is None:
            continue
        if match.winner_id == key:
            wins += 1
            if opponent_rank is not None and current is not None and opponent_rank < current:
                higher_beaten.append(opponent_rank)
        else:
            losses += 1
            if opponent_rank is not None and current is not None and opponent_rank > current:
                lower_lost.append(opponent_rank)

    if wins == len(played):
        return min(higher_beaten) if higher_beaten else current
    if losses == len(played):
        return max(lower_lost) if lower_lost else current
    if higher_beaten and lower_lost:
        average_up = sum(higher_beaten) / len(higher_beaten)
        average_down = sum(lower_lost) / len(lower_lost)
        return half_up((average_up + average_down) / 2)
    return current


def potential_movement(player_id, open_matches, rank_by_player):
    """
    (potential_up, potential_down) from a player's pending matches: the best
    rank they can climb to and the worst rank they can drop to. None when no
    pending match can move them.
    """
    current = rank_by_player.get(player_id)
    if current is None:
        return None

    potential_up = potential_down = None
    for match in open_matches:
        if match.status != PENDING or player_id not in match.participant_ids:
            continue
        opponent_rank = rank_by_player.get(match.opponent_of(player_id))
        if opponent_rank is None:
            continue
        if opponent_rank < current:
            potential_up = opponent_rank if potential_up is None else min(potential_up, opponent_rank)
        if opponent_rank > current:
            potential_down = opponent_rank if potential_down is None else max(potential_down, opponent_rank)

    if potential_up is None and potential_down is None:
        return None
    return potential_up, potential_down

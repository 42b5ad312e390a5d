from typing import Dict, Iterable, Optional

from .state import PhaseScore, Team

PHASE_TITLES = {
    1: 'Free description',
    2: 'One word',
    3: 'Mime',
}


def phase_title(phase: int) -> str:
    return PHASE_TITLES.get(phase, '')


def totals(scores: Iterable[PhaseScore]) -> Dict[str, int]:
    """Sum the phase ledger per team. The final tally is this sum over all phases."""
    team_a = 0
    team_b = 0
    for s in scores:
        team_a += s.team_a
        team_b += s.team_b
    return {Team.A.value: team_a, Team.B.value: team_b}


def winner(scores: Iterable[PhaseScore]) -> Optional[Team]:
    """Team with the higher total, or None on a tie."""
    summed = totals(scores)
    if summed[Team.A.value] > summed[Team.B.value]:
        return Team.A
    if summed[Team.B.value] > summed[Team.A.value]:
        return Team.B
    return None


def summarize(scores) -> dict:
    scores = list(scores)
    best = winner(scores)
    return {
        'phases': [dict(s.to_dict(), title=phase_title(s.phase)) for s in scores],
        'totals': totals(scores),
        'winner': best.value if best else None,
    }

"""AI dispositions: how the solver picks among scored root moves."""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Sequence

from thinchess.core.position import Move
from thinchess.core.rules import AIStrategy, Verdict


@dataclass(frozen=True)
class Candidate:
    """One root move with its score from the mover's point of view."""
    move: Move
    score: int
    verdict: Verdict = Verdict.UNKNOWN
    proven: bool = False
    exact: bool = True  # False when the score is only an alpha-beta upper bound

    @property
    def outcome(self) -> Verdict:
        """Proven verdict, or the outcome the score leans toward."""
        if self.verdict is not Verdict.UNKNOWN:
            return self.verdict
        if self.score > 0:
            return Verdict.WIN
        if self.score < 0:
            return Verdict.LOSS
        return Verdict.DRAW


_PERFECT_RANK = {Verdict.WIN: 2, Verdict.DRAW: 1, Verdict.LOSS: 0}
_AGGRESSIVE_RANK = {Verdict.WIN: 2, Verdict.LOSS: 1, Verdict.DRAW: 0}


def select_candidate(
    candidates: Sequence[Candidate],
    strategy: AIStrategy = AIStrategy.PERFECT,
    rng: Optional[random.Random] = None,
    margin: int = 50,
) -> Candidate:
    if not candidates:
        raise ValueError("No candidate moves to choose from")
    strategy = AIStrategy(strategy)

    if strategy is AIStrategy.PERFECT:
        return max(candidates, key=lambda c: (_PERFECT_RANK[c.outcome], c.score, c.exact))

    if strategy is AIStrategy.AGGRESSIVE:
        # a decisive game is preferred over a draw, even a lost one
        return max(candidates, key=lambda c: (_AGGRESSIVE_RANK[c.outcome], c.score, c.exact))

    rng = rng or random
    clear_lead = [c for c in candidates if c.score > margin]
    if clear_lead:
        return rng.choice(clear_lead)
    non_winning = [c for c in candidates if c.score <= 0] or list(candidates)
    return rng.choice(non_winning)

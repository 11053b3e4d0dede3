"""Rule configuration and terminal-state classification."""
from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, fields
from typing import Any, List, Mapping, Optional, Sequence

import chess

from thinchess.core.movegen import generate_legal_moves, is_check
from thinchess.core.position import Move, Position, repetition_key

FIFTY_MOVE_PLIES = 100
THREEFOLD_COUNT = 3


class RuleSetError(ValueError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AIStrategy(str, enum.Enum):
    PERFECT = "perfect"
    AGGRESSIVE = "aggressive"
    COOPERATIVE = "cooperative"


class Verdict(str, enum.Enum):
    """Game-theoretic outcome from the point of view of the side to move."""
    WIN = "win"
    DRAW = "draw"
    LOSS = "loss"
    UNKNOWN = "unknown"

    def flipped(self) -> "Verdict":
        if self is Verdict.WIN:
            return Verdict.LOSS
        if self is Verdict.LOSS:
            return Verdict.WIN
        return self


_ALIASES = {
    "enPassant": "en_passant",
    "fiftyMoveRule": "fifty_move",
    "fiftyMove": "fifty_move",
    "threefoldRepetition": "threefold",
    "pawnDoubleStep": "pawn_double_step",
    "materialCountWin": "material_count_win",
    "raceToBackRank": "race_to_back_rank",
    "aiStrategy": "ai_strategy",
}


@dataclass(frozen=True)
class RuleSet:
    castling: bool = False
    en_passant: bool = False
    fifty_move: bool = True
    threefold: bool = True
    promotion: bool = True
    pawn_double_step: bool = True
    material_count_win: bool = False
    race_to_back_rank: bool = False
    ai_strategy: Optional[AIStrategy] = None

    def __post_init__(self):
        for f in fields(self):
            if f.name == "ai_strategy":
                continue
            if not isinstance(getattr(self, f.name), bool):
                raise RuleSetError(f"Rule {f.name!r} must be a boolean, got {getattr(self, f.name)!r}", field=f.name)
        if self.ai_strategy is not None and not isinstance(self.ai_strategy, AIStrategy):
            try:
                object.__setattr__(self, "ai_strategy", AIStrategy(self.ai_strategy))
            except ValueError:
                raise RuleSetError(f"Unknown AI strategy {self.ai_strategy!r}", field="ai_strategy")
        if self.en_passant and not self.pawn_double_step:
            raise RuleSetError("En passant requires the pawn double step", field="en_passant")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleSet":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise RuleSetError(f"Unknown rule {key!r}", field=key)
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["ai_strategy"] = self.ai_strategy.value if self.ai_strategy else None
        return data


DEFAULT_RULES = RuleSet()


class Terminal(str, enum.Enum):
    WHITE_MATE = "WHITE_MATE"
    BLACK_MATE = "BLACK_MATE"
    STALEMATE = "STALEMATE"
    DRAW_FIFTY = "DRAW_FIFTY"
    DRAW_THREEFOLD = "DRAW_THREEFOLD"
    WHITE_MATERIAL_WIN = "WHITE_MATERIAL_WIN"
    BLACK_MATERIAL_WIN = "BLACK_MATERIAL_WIN"
    DRAW_MATERIAL_TIE = "DRAW_MATERIAL_TIE"
    WHITE_RACE_WIN = "WHITE_RACE_WIN"
    BLACK_RACE_WIN = "BLACK_RACE_WIN"

    @property
    def winner(self) -> Optional[chess.Color]:
        if self in (Terminal.BLACK_MATE, Terminal.WHITE_MATERIAL_WIN, Terminal.WHITE_RACE_WIN):
            return chess.WHITE
        if self in (Terminal.WHITE_MATE, Terminal.BLACK_MATERIAL_WIN, Terminal.BLACK_RACE_WIN):
            return chess.BLACK
        return None

    @property
    def is_draw(self) -> bool:
        return self.winner is None

    def verdict_for(self, color: chess.Color) -> Verdict:
        winner = self.winner
        if winner is None:
            return Verdict.DRAW
        return Verdict.WIN if winner == color else Verdict.LOSS

    def describe(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    Terminal.WHITE_MATE: "Black Wins - White is checkmated",
    Terminal.BLACK_MATE: "White Wins - Black is checkmated",
    Terminal.STALEMATE: "Draw - Stalemate",
    Terminal.DRAW_FIFTY: "Draw - Fifty-move rule",
    Terminal.DRAW_THREEFOLD: "Draw - Threefold repetition",
    Terminal.WHITE_MATERIAL_WIN: "White Wins - More pieces remaining",
    Terminal.BLACK_MATERIAL_WIN: "Black Wins - More pieces remaining",
    Terminal.DRAW_MATERIAL_TIE: "Draw - Equal pieces remaining",
    Terminal.WHITE_RACE_WIN: "White Wins - Piece reached back rank!",
    Terminal.BLACK_RACE_WIN: "Black Wins - Piece reached back rank!",
}


def _race_winner(pos: Position) -> Optional[chess.Color]:
    g = pos.geometry
    arrived = [
        color for color in chess.COLORS
        if any(g.coords(sq)[0] == g.far_row(color) for sq, _ in pos.pieces(color))
    ]
    if not arrived:
        return None
    if len(arrived) == 2:
        return not pos.turn
    return arrived[0]


def repetition_count(pos: Position, history: Optional[Sequence[str]]) -> int:
    """Occurrences of the position in ``history``, counting the current one if history does not end with it."""
    key = repetition_key(pos)
    history = list(history or ())
    count = history.count(key)
    if not history or history[-1] != key:
        count += 1
    return count


def classify(
    pos: Position,
    rules: RuleSet,
    history: Optional[Sequence[str]] = None,
    moves: Optional[List[Move]] = None,
) -> Optional[Terminal]:
    """Terminal verdict without validating the position; ``moves`` may be passed to skip regeneration."""
    if rules.race_to_back_rank:
        winner = _race_winner(pos)
        if winner is not None:
            return Terminal.WHITE_RACE_WIN if winner == chess.WHITE else Terminal.BLACK_RACE_WIN

    if moves is None:
        moves = generate_legal_moves(pos, rules)
    if not moves:
        if is_check(pos):
            return Terminal.WHITE_MATE if pos.turn == chess.WHITE else Terminal.BLACK_MATE
        if rules.material_count_win:
            white, black = pos.piece_count(chess.WHITE), pos.piece_count(chess.BLACK)
            if white > black:
                return Terminal.WHITE_MATERIAL_WIN
            if black > white:
                return Terminal.BLACK_MATERIAL_WIN
            return Terminal.DRAW_MATERIAL_TIE
        return Terminal.STALEMATE

    if rules.fifty_move and pos.halfmove_clock >= FIFTY_MOVE_PLIES:
        return Terminal.DRAW_FIFTY

    if rules.threefold and history and repetition_count(pos, history) >= THREEFOLD_COUNT:
        return Terminal.DRAW_THREEFOLD

    return None


def terminal(pos: Position, rules: RuleSet = DEFAULT_RULES, history: Optional[Sequence[str]] = None) -> Optional[Terminal]:
    """Classify ``pos`` as a finished game, or None if play continues."""
    pos.validate()
    return classify(pos, rules, history)

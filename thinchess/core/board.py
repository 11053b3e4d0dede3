"""Game board wrapper providing move history and repetition tracking."""

from typing import List, Optional

from thinchess.core.movegen import apply_move, generate_legal_moves
from thinchess.core.position import (
    START_POSITIONS,
    Move,
    Position,
    PositionError,
    Variant,
    decode,
    encode,
    repetition_key,
)
from thinchess.core.rules import DEFAULT_RULES, RuleSet, Terminal, classify


class IllegalMoveError(ValueError):
    pass


class ChessBoard:
    def __init__(self, code: str = None, variant=Variant.THIN, length: Optional[int] = None,
                 rules: RuleSet = DEFAULT_RULES):
        """Initialize from an encoded position or the variant's starting position."""
        self.variant = Variant(variant)
        self.length = length
        self.rules = rules
        self.start_code = code or START_POSITIONS[self.variant]
        self.position = decode(self.start_code, self.variant, length)
        self.move_history: List[Move] = []
        self.history: List[str] = [repetition_key(self.position)]
        self._stack: List[Position] = []

    @property
    def geometry(self):
        return self.position.geometry

    def reset(self):
        """Reset to the position the board was created or last loaded with."""
        self.position = decode(self.start_code, self.variant, self.length)
        self.move_history.clear()
        self.history = [repetition_key(self.position)]
        self._stack.clear()

    def set_position(self, code: str, variant=None, length: Optional[int] = None):
        """Load a new position; the history starts over from it."""
        variant = Variant(variant) if variant else self.variant
        position = decode(code, variant, length)
        self.variant, self.length, self.start_code = variant, length, code
        self.position = position
        self.move_history.clear()
        self.history = [repetition_key(position)]
        self._stack.clear()

    def get_code(self) -> str:
        return encode(self.position)

    def legal_moves(self) -> List[Move]:
        return generate_legal_moves(self.position, self.rules)

    def push(self, move: Move):
        """Play a move, raising IllegalMoveError if it is not legal here."""
        if self.terminal() is not None:
            raise IllegalMoveError("The game is already over")
        if move not in self.legal_moves():
            raise IllegalMoveError(f"Illegal move: {move.uci(self.geometry)}")
        self._stack.append(self.position)
        self.position = apply_move(self.position, move)
        self.move_history.append(move)
        self.history.append(repetition_key(self.position))

    def make_move(self, move_str: str) -> bool:
        """Push a move given as text (e.g. 'a1a2'). Returns True if legal."""
        try:
            self.push(Move.from_uci(move_str, self.geometry))
            return True
        except (PositionError, IllegalMoveError):
            return False

    def undo_move(self):
        """Pop the last move."""
        if self.move_history:
            self.position = self._stack.pop()
            self.move_history.pop()
            self.history.pop()

    def get_legal_moves(self) -> List[str]:
        """Return legal moves as text."""
        return [m.uci(self.geometry) for m in self.legal_moves()]

    def terminal(self) -> Optional[Terminal]:
        return classify(self.position, self.rules, self.history)

    def is_game_over(self) -> bool:
        """Check if the game has ended."""
        return self.terminal() is not None

    def print_board(self):
        """Print the board, top row first."""
        print(self.position.ascii())

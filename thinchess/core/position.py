"""Board geometry, positions, moves and the text encoding of positions.

A position is an immutable value. Cells are stored rank-major with row 0 at
the top of the encoding; white's home row is the bottom row and white moves
toward row 0. Pieces are ``chess.Piece`` values from python-chess so piece
types and colours are shared with the rest of the chess ecosystem.

Short encoding::

    thin:    bk,br,bn,br,bn,x,x,wn,wr,wn,wr,wk:w
    skinny:  x,bk/x,bb/x,bn/x,br/x,x/x,x/wr,x/wn,x/wb,x/wk,x:w

Extended encoding appends castling rights, the en-passant square and the
halfmove clock: ``cells:side:castling:ep:halfmove`` (``-`` for none).
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, Iterator, List, Optional, Tuple

import chess

EMPTY_TOKEN = "x"
EMPTY_ALIASES = ("x", ".")
CELL_SEP = ","
RANK_SEP = "/"
FIELD_SEP = ":"
SQUARE_SEP = "."
FILES = "ab"

Cell = Optional[chess.Piece]


class PositionError(ValueError):
    """Malformed position encoding or a position that breaks the board invariants."""

    def __init__(self, message: str, field: Optional[str] = None, token: Optional[str] = None):
        super().__init__(message)
        self.field = field
        self.token = token


class InvariantViolation(RuntimeError):
    """A position that should have been valid turned out corrupted mid-operation."""


class Variant(str, enum.Enum):
    THIN = "thin"
    SKINNY = "skinny"


VARIANT_WIDTH = {Variant.THIN: 1, Variant.SKINNY: 2}
DEFAULT_LENGTH = {Variant.THIN: 12, Variant.SKINNY: 10}
MIN_LENGTH = 3

ALPHABET = {
    Variant.THIN: frozenset({chess.KING, chess.ROOK, chess.KNIGHT}),
    Variant.SKINNY: frozenset({chess.KING, chess.ROOK, chess.KNIGHT, chess.BISHOP, chess.PAWN}),
}

START_POSITIONS = {
    Variant.THIN: "bk,br,bn,br,bn,x,x,wn,wr,wn,wr,wk:w",
    Variant.SKINNY: "x,bk/x,bb/x,bn/x,br/x,x/x,x/wr,x/wn,x/wb,x/wk,x:w",
}


@dataclass(frozen=True)
class Geometry:
    variant: Variant
    width: int
    height: int

    @property
    def size(self) -> int:
        return self.width * self.height

    def coords(self, square: int) -> Tuple[int, int]:
        """(row, file) of a flat square index."""
        return divmod(square, self.width)

    def index(self, row: int, file: int) -> int:
        return row * self.width + file

    def in_bounds(self, row: int, file: int) -> bool:
        return 0 <= row < self.height and 0 <= file < self.width

    def home_row(self, color: chess.Color) -> int:
        return self.height - 1 if color == chess.WHITE else 0

    def far_row(self, color: chess.Color) -> int:
        return self.home_row(not color)

    def square_name(self, square: int) -> str:
        row, file = self.coords(square)
        return f"{FILES[file]}{self.height - row}"

    def parse_square(self, name: str) -> int:
        m = re.fullmatch(r"([ab])(\d+)", name.strip().lower())
        if not m:
            raise PositionError(f"Invalid square name: {name!r}", field="square", token=name)
        file = FILES.index(m.group(1))
        rank = int(m.group(2))
        row = self.height - rank
        if not self.in_bounds(row, file):
            raise PositionError(f"Square {name!r} is off the board", field="square", token=name)
        return self.index(row, file)


@lru_cache(maxsize=None)
def _geometry(variant: Variant, cell_count: int) -> Geometry:
    width = VARIANT_WIDTH[variant]
    return Geometry(variant, width, cell_count // width)


def geometry_for(variant, length: Optional[int] = None) -> Geometry:
    """Geometry of a board of the given variant; ``length`` defaults to the variant's standard."""
    try:
        variant = Variant(variant)
    except ValueError:
        raise PositionError(f"Unknown variant: {variant!r}", field="variant", token=str(variant))
    height = DEFAULT_LENGTH[variant] if length is None else int(length)
    if height < MIN_LENGTH:
        raise PositionError(f"Board length must be at least {MIN_LENGTH}, got {height}", field="length")
    return _geometry(variant, height * VARIANT_WIDTH[variant])


@dataclass(frozen=True)
class Move:
    from_square: int
    to_square: int
    promotion: Optional[chess.PieceType] = None

    def uci(self, geometry: Geometry) -> str:
        text = geometry.square_name(self.from_square) + geometry.square_name(self.to_square)
        if self.promotion:
            text += chess.piece_symbol(self.promotion)
        return text

    @classmethod
    def from_uci(cls, text: str, geometry: Geometry) -> "Move":
        m = re.fullmatch(r"([ab]\d+)([ab]\d+)([rnb])?", text.strip().lower())
        if not m:
            raise PositionError(f"Invalid move text: {text!r}", field="move", token=text)
        promotion = chess.PIECE_SYMBOLS.index(m.group(3)) if m.group(3) else None
        return cls(geometry.parse_square(m.group(1)), geometry.parse_square(m.group(2)), promotion)


def piece_to_token(piece: Cell) -> str:
    if piece is None:
        return EMPTY_TOKEN
    return ("w" if piece.color == chess.WHITE else "b") + chess.piece_symbol(piece.piece_type)


def token_to_piece(token: str, variant: Optional[Variant] = None) -> Cell:
    """Parse one cell token; raises PositionError for malformed or out-of-alphabet tokens."""
    token = token.strip()
    if token in EMPTY_ALIASES:
        return None
    if len(token) != 2 or token[0] not in "wb" or token[1] not in chess.PIECE_SYMBOLS[1:]:
        raise PositionError(f"Invalid piece token: {token!r}", field="cells", token=token)
    piece_type = chess.PIECE_SYMBOLS.index(token[1])
    if variant is not None and piece_type not in ALPHABET[Variant(variant)]:
        raise PositionError(
            f"Piece {token!r} is not allowed on a {Variant(variant).value} board",
            field="cells", token=token,
        )
    return chess.Piece(piece_type, token[0] == "w")


@dataclass(frozen=True)
class Position:
    variant: Variant
    cells: Tuple[Cell, ...]
    turn: chess.Color = chess.WHITE
    castling: FrozenSet[int] = frozenset()
    ep_square: Optional[int] = None
    halfmove_clock: int = 0

    @property
    def geometry(self) -> Geometry:
        return _geometry(self.variant, len(self.cells))

    def piece_at(self, square: int) -> Cell:
        return self.cells[square]

    def pieces(self, color: Optional[chess.Color] = None) -> Iterator[Tuple[int, chess.Piece]]:
        for sq, piece in enumerate(self.cells):
            if piece is not None and (color is None or piece.color == color):
                yield sq, piece

    def piece_count(self, color: Optional[chess.Color] = None) -> int:
        return sum(1 for _ in self.pieces(color))

    def king_square(self, color: chess.Color) -> Optional[int]:
        for sq, piece in self.pieces(color):
            if piece.piece_type == chess.KING:
                return sq
        return None

    def validate(self) -> None:
        """Raise PositionError unless the position satisfies the board invariants."""
        width = VARIANT_WIDTH[self.variant]
        if len(self.cells) % width or len(self.cells) // width < MIN_LENGTH:
            raise PositionError(f"Cell count {len(self.cells)} does not fit a {self.variant.value} board", field="cells")
        alphabet = ALPHABET[self.variant]
        for piece in self.cells:
            if piece is not None and piece.piece_type not in alphabet:
                raise PositionError(
                    f"Piece {piece_to_token(piece)!r} is not allowed on a {self.variant.value} board",
                    field="cells", token=piece_to_token(piece),
                )
        for color in chess.COLORS:
            kings = sum(1 for _, p in self.pieces(color) if p.piece_type == chess.KING)
            if kings != 1:
                name = chess.COLOR_NAMES[color]
                raise PositionError(f"Expected exactly one {name} king, found {kings}", field="cells", token=name[0] + "k")
        # movegen imports this module
        from thinchess.core.movegen import is_attacked

        if is_attacked(self.cells, self.geometry, self.king_square(not self.turn), self.turn):
            side = chess.COLOR_NAMES[self.turn]
            raise PositionError(
                f"The {chess.COLOR_NAMES[not self.turn]} king is already attacked with {side} to move",
                field="turn", token="w" if self.turn == chess.WHITE else "b",
            )
        size = len(self.cells)
        for sq in self.castling:
            if not 0 <= sq < size:
                raise PositionError(f"Castling square {sq} is off the board", field="castling", token=str(sq))
        if self.ep_square is not None and not 0 <= self.ep_square < size:
            raise PositionError(f"En-passant square {self.ep_square} is off the board", field="ep", token=str(self.ep_square))
        if self.halfmove_clock < 0:
            raise PositionError("Halfmove clock cannot be negative", field="halfmove", token=str(self.halfmove_clock))

    def ascii(self) -> str:
        g = self.geometry
        lines = []
        for row in range(g.height):
            rank = g.height - row
            cells = [self.cells[g.index(row, f)] for f in range(g.width)]
            symbols = " ".join(p.unicode_symbol() if p else "·" for p in cells)
            lines.append(f"{rank:>2} {symbols}")
        lines.append("   " + " ".join(FILES[: g.width]))
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.ascii()


def default_castling_rights(cells: Tuple[Cell, ...], geometry: Geometry) -> FrozenSet[int]:
    """Rook squares of every side whose king still stands on its home row."""
    rights = set()
    for color in chess.COLORS:
        king = next((sq for sq, p in enumerate(cells)
                     if p is not None and p.color == color and p.piece_type == chess.KING), None)
        if king is None:
            continue
        row, file = geometry.coords(king)
        if row != geometry.home_row(color):
            continue
        for sq, p in enumerate(cells):
            if p is not None and p.color == color and p.piece_type == chess.ROOK and geometry.coords(sq)[1] == file:
                rights.add(sq)
    return frozenset(rights)


def _parse_side(raw: str) -> chess.Color:
    raw = raw.strip()
    if raw in ("", "w"):
        return chess.WHITE
    if raw == "b":
        return chess.BLACK
    raise PositionError(f"Invalid side to move: {raw!r}", field="side", token=raw)


def _parse_int_field(raw: str, field: str, size: int) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise PositionError(f"Invalid {field} field: {raw!r}", field=field, token=raw)
    if not 0 <= value < size:
        raise PositionError(f"{field} square {value} is off the board", field=field, token=raw)
    return value


def _split_cells(raw: str, geometry: Geometry) -> List[str]:
    if geometry.width == 1:
        return [t.strip() for t in raw.split(CELL_SEP)]
    tokens: List[str] = []
    for n, rank in enumerate(raw.split(RANK_SEP)):
        items = [t.strip() for t in rank.split(CELL_SEP)]
        if len(items) != geometry.width:
            raise PositionError(
                f"Rank {n + 1} has {len(items)} cells, expected {geometry.width}",
                field="cells", token=rank,
            )
        tokens.extend(items)
    return tokens


def decode(code: str, variant=Variant.THIN, length: Optional[int] = None) -> Position:
    """Parse a position encoding; raises PositionError naming the offending field.

    Without an explicit ``length`` the board length is read off the encoding.
    """
    fields = code.strip().split(FIELD_SEP)
    if len(fields) not in (1, 2, 5):
        raise PositionError(f"Expected 1, 2 or 5 ':'-separated fields, got {len(fields)}", field="code", token=code)
    if length is None:
        sep = CELL_SEP if geometry_for(variant).width == 1 else RANK_SEP
        length = len(fields[0].split(sep))
    geometry = geometry_for(variant, length)

    tokens = _split_cells(fields[0], geometry)
    if len(tokens) != geometry.size:
        raise PositionError(
            f"Expected {geometry.size} squares for a {geometry.variant.value} board "
            f"of length {geometry.height}, got {len(tokens)}",
            field="cells",
        )
    cells = tuple(token_to_piece(t, geometry.variant) for t in tokens)
    turn = _parse_side(fields[1]) if len(fields) > 1 else chess.WHITE

    if len(fields) == 5:
        _, _, castling_raw, ep_raw, clock_raw = (f.strip() for f in fields)
        castling = frozenset() if castling_raw == "-" else frozenset(
            _parse_int_field(s, "castling", geometry.size) for s in castling_raw.split(SQUARE_SEP)
        )
        ep_square = None if ep_raw == "-" else _parse_int_field(ep_raw, "ep", geometry.size)
        try:
            clock = int(clock_raw)
        except ValueError:
            raise PositionError(f"Invalid halfmove field: {clock_raw!r}", field="halfmove", token=clock_raw)
    else:
        castling = default_castling_rights(cells, geometry)
        ep_square = None
        clock = 0

    pos = Position(geometry.variant, cells, turn, castling, ep_square, clock)
    pos.validate()
    return pos


def _cells_field(pos: Position) -> str:
    g = pos.geometry
    tokens = [piece_to_token(p) for p in pos.cells]
    if g.width == 1:
        return CELL_SEP.join(tokens)
    return RANK_SEP.join(CELL_SEP.join(tokens[r * g.width:(r + 1) * g.width]) for r in range(g.height))


def _castling_field(castling: FrozenSet[int]) -> str:
    return SQUARE_SEP.join(str(sq) for sq in sorted(castling)) if castling else "-"


def has_default_state(pos: Position) -> bool:
    return (
        pos.ep_square is None
        and pos.halfmove_clock == 0
        and pos.castling == default_castling_rights(pos.cells, pos.geometry)
    )


def encode(pos: Position, extended: Optional[bool] = None) -> str:
    """Inverse of decode; the extended form is used whenever the short one would lose state."""
    text = _cells_field(pos) + FIELD_SEP + ("w" if pos.turn == chess.WHITE else "b")
    if extended is None:
        extended = not has_default_state(pos)
    if extended:
        ep = "-" if pos.ep_square is None else str(pos.ep_square)
        text += FIELD_SEP.join(["", _castling_field(pos.castling), ep, str(pos.halfmove_clock)])
    return text


def position_key(
    pos: Position,
    include_clock: bool = False,
    include_castling: bool = True,
    include_ep: bool = True,
) -> str:
    """Canonical cache key; fields that are excluded are written as '-' so keys stay comparable."""
    parts = [
        _cells_field(pos),
        "w" if pos.turn == chess.WHITE else "b",
        _castling_field(pos.castling) if include_castling else "-",
        str(pos.ep_square) if include_ep and pos.ep_square is not None else "-",
    ]
    if include_clock:
        parts.append(str(pos.halfmove_clock))
    return FIELD_SEP.join(parts)


def repetition_key(pos: Position) -> str:
    return position_key(pos)


def start_position(variant=Variant.THIN) -> Position:
    variant = Variant(variant)
    return decode(START_POSITIONS[variant], variant)

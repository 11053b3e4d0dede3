"""Attack detection and legal move generation for thin and skinny boards."""
from __future__ import annotations

from typing import Iterator, List, Optional, Sequence

import chess

from thinchess.core.position import Cell, Geometry, InvariantViolation, Move, Position

ROOK_DIRECTIONS = ((-1, 0), (1, 0), (0, -1), (0, 1))
BISHOP_DIRECTIONS = ((-1, -1), (-1, 1), (1, -1), (1, 1))
KING_DELTAS = ROOK_DIRECTIONS + BISHOP_DIRECTIONS
THIN_KNIGHT_DELTAS = ((-2, 0), (2, 0))
SKINNY_KNIGHT_DELTAS = ((-2, -1), (-2, 1), (2, -1), (2, 1), (-1, -2), (-1, 2), (1, -2), (1, 2))
PROMOTION_PIECES = (chess.ROOK, chess.BISHOP, chess.KNIGHT)


def forward(color: chess.Color) -> int:
    """Row delta of a pawn step for the given side."""
    return -1 if color == chess.WHITE else 1


def knight_deltas(geometry: Geometry):
    return THIN_KNIGHT_DELTAS if geometry.width == 1 else SKINNY_KNIGHT_DELTAS


def _is(piece: Cell, piece_type: chess.PieceType, color: chess.Color) -> bool:
    return piece is not None and piece.piece_type == piece_type and piece.color == color


def is_attacked(cells: Sequence[Cell], geometry: Geometry, square: int, by_color: chess.Color) -> bool:
    """True if a piece of ``by_color`` could capture onto ``square``."""
    row, file = geometry.coords(square)

    for dr, df in KING_DELTAS:
        r, f = row + dr, file + df
        if geometry.in_bounds(r, f) and _is(cells[geometry.index(r, f)], chess.KING, by_color):
            return True

    for dr, df in knight_deltas(geometry):
        r, f = row + dr, file + df
        if geometry.in_bounds(r, f) and _is(cells[geometry.index(r, f)], chess.KNIGHT, by_color):
            return True

    for directions, slider in ((ROOK_DIRECTIONS, chess.ROOK), (BISHOP_DIRECTIONS, chess.BISHOP)):
        for dr, df in directions:
            r, f = row + dr, file + df
            while geometry.in_bounds(r, f):
                piece = cells[geometry.index(r, f)]
                if piece is not None:
                    if piece.color == by_color and piece.piece_type in (slider, chess.QUEEN):
                        return True
                    break
                r, f = r + dr, f + df

    pawn_row = row - forward(by_color)
    for df in (-1, 1):
        if geometry.in_bounds(pawn_row, file + df) and _is(cells[geometry.index(pawn_row, file + df)], chess.PAWN, by_color):
            return True

    return False


def find_king(cells: Sequence[Cell], color: chess.Color) -> int:
    for sq, piece in enumerate(cells):
        if _is(piece, chess.KING, color):
            return sq
    raise InvariantViolation(f"No {chess.COLOR_NAMES[color]} king on the board")


def is_check(pos: Position) -> bool:
    king = find_king(pos.cells, pos.turn)
    return is_attacked(pos.cells, pos.geometry, king, not pos.turn)


def is_capture(pos: Position, move: Move) -> bool:
    if pos.cells[move.to_square] is not None:
        return True
    piece = pos.cells[move.from_square]
    return _is_en_passant(pos, move, piece)


def _is_en_passant(pos: Position, move: Move, piece: Cell) -> bool:
    if piece is None or piece.piece_type != chess.PAWN or move.to_square != pos.ep_square:
        return False
    g = pos.geometry
    return g.coords(move.from_square)[1] != g.coords(move.to_square)[1] and pos.cells[move.to_square] is None


def _slide(pos: Position, square: int, directions, color: chess.Color) -> Iterator[Move]:
    g = pos.geometry
    row, file = g.coords(square)
    for dr, df in directions:
        r, f = row + dr, file + df
        while g.in_bounds(r, f):
            target = pos.cells[g.index(r, f)]
            if target is None:
                yield Move(square, g.index(r, f))
            else:
                if target.color != color:
                    yield Move(square, g.index(r, f))
                break
            r, f = r + dr, f + df


def _step(pos: Position, square: int, deltas, color: chess.Color) -> Iterator[Move]:
    g = pos.geometry
    row, file = g.coords(square)
    for dr, df in deltas:
        r, f = row + dr, file + df
        if not g.in_bounds(r, f):
            continue
        target = pos.cells[g.index(r, f)]
        if target is None or target.color != color:
            yield Move(square, g.index(r, f))


def _pawn_moves(pos: Position, square: int, color: chess.Color, rules) -> Iterator[Move]:
    g = pos.geometry
    row, file = g.coords(square)
    step = forward(color)
    far = g.far_row(color)

    def with_promotion(to_square: int) -> Iterator[Move]:
        if g.coords(to_square)[0] == far and rules.promotion:
            for piece_type in PROMOTION_PIECES:
                yield Move(square, to_square, piece_type)
        else:
            yield Move(square, to_square)

    one = row + step
    if g.in_bounds(one, file) and pos.cells[g.index(one, file)] is None:
        yield from with_promotion(g.index(one, file))
        two = row + 2 * step
        start_row = g.home_row(color) + (-1 if color == chess.WHITE else 1)
        if (rules.pawn_double_step and row == start_row
                and g.in_bounds(two, file) and pos.cells[g.index(two, file)] is None):
            yield Move(square, g.index(two, file))

    for df in (-1, 1):
        if not g.in_bounds(one, file + df):
            continue
        target_sq = g.index(one, file + df)
        target = pos.cells[target_sq]
        if target is not None and target.color != color:
            yield from with_promotion(target_sq)
        elif target is None and rules.en_passant and target_sq == pos.ep_square:
            yield Move(square, target_sq)


def generate_pseudo_legal_moves(pos: Position, rules) -> Iterator[Move]:
    """Moves that obey piece geometry but may leave the mover's king attacked. Castling is excluded."""
    color = pos.turn
    g = pos.geometry
    for sq, piece in pos.pieces(color):
        pt = piece.piece_type
        if pt == chess.KING:
            yield from _step(pos, sq, KING_DELTAS, color)
        elif pt == chess.KNIGHT:
            yield from _step(pos, sq, knight_deltas(g), color)
        elif pt == chess.ROOK:
            yield from _slide(pos, sq, ROOK_DIRECTIONS, color)
        elif pt == chess.BISHOP:
            yield from _slide(pos, sq, BISHOP_DIRECTIONS, color)
        elif pt == chess.QUEEN:
            yield from _slide(pos, sq, KING_DELTAS, color)
        elif pt == chess.PAWN:
            yield from _pawn_moves(pos, sq, color, rules)


def _leaves_king_attacked(pos: Position, move: Move, king_sq: int) -> bool:
    cells = list(pos.cells)
    piece = cells[move.from_square]
    if _is_en_passant(pos, move, piece):
        g = pos.geometry
        cells[g.index(g.coords(move.from_square)[0], g.coords(move.to_square)[1])] = None
    cells[move.to_square] = piece
    cells[move.from_square] = None
    if piece.piece_type == chess.KING:
        king_sq = move.to_square
    return is_attacked(cells, pos.geometry, king_sq, not pos.turn)


def _castling_moves(pos: Position, king_sq: int) -> Iterator[Move]:
    g = pos.geometry
    color = pos.turn
    king_row, king_file = g.coords(king_sq)
    if not pos.castling or is_attacked(pos.cells, g, king_sq, not color):
        return
    for rook_sq in sorted(pos.castling):
        if not _is(pos.cells[rook_sq], chess.ROOK, color):
            continue
        rook_row, rook_file = g.coords(rook_sq)
        if rook_file != king_file or abs(rook_row - king_row) < 3:
            continue
        direction = 1 if rook_row > king_row else -1
        between = range(king_row + direction, rook_row, direction)
        if any(pos.cells[g.index(r, king_file)] is not None for r in between):
            continue
        crossed = g.index(king_row + direction, king_file)
        dest = g.index(king_row + 2 * direction, king_file)
        if is_attacked(pos.cells, g, crossed, not color):
            continue
        # the rook leaves its square too, which can open a line onto the king
        move = Move(king_sq, dest)
        if is_attacked(apply_move(pos, move).cells, g, dest, not color):
            continue
        yield move


def generate_legal_moves(pos: Position, rules) -> List[Move]:
    """Legal moves for the side to move. Assumes a validated position."""
    king_sq = find_king(pos.cells, pos.turn)
    moves = [m for m in generate_pseudo_legal_moves(pos, rules) if not _leaves_king_attacked(pos, m, king_sq)]
    if rules.castling:
        moves.extend(_castling_moves(pos, king_sq))
    return moves


def legal_moves(pos: Position, rules) -> List[Move]:
    pos.validate()
    return generate_legal_moves(pos, rules)


def _castling_rook(pos: Position, move: Move) -> Optional[int]:
    """Square of the rook taking part in a castling move, or None for any other king move."""
    g = pos.geometry
    from_row, from_file = g.coords(move.from_square)
    to_row, to_file = g.coords(move.to_square)
    if from_file != to_file or abs(to_row - from_row) != 2:
        return None
    direction = 1 if to_row > from_row else -1
    r = to_row
    while g.in_bounds(r, from_file):
        sq = g.index(r, from_file)
        if sq in pos.castling and _is(pos.cells[sq], chess.ROOK, pos.turn):
            return sq
        r += direction
    return None


def apply_move(pos: Position, move: Move) -> Position:
    """Return the position after ``move``; the input position is left untouched."""
    g = pos.geometry
    cells = list(pos.cells)
    piece = cells[move.from_square]
    if piece is None:
        raise InvariantViolation(f"No piece on {g.square_name(move.from_square)}")
    captured = cells[move.to_square]
    castling = set(pos.castling)
    ep_square = None

    if _is_en_passant(pos, move, piece):
        victim = g.index(g.coords(move.from_square)[0], g.coords(move.to_square)[1])
        captured = cells[victim]
        cells[victim] = None

    if piece.piece_type == chess.KING:
        rook_sq = _castling_rook(pos, move)
        if rook_sq is not None:
            step = 1 if move.to_square > move.from_square else -1
            crossed = g.index(g.coords(move.from_square)[0] + step, g.coords(move.from_square)[1])
            cells[crossed] = cells[rook_sq]
            cells[rook_sq] = None
        castling = {sq for sq in castling if pos.cells[sq] is None or pos.cells[sq].color != piece.color}
    castling.discard(move.from_square)
    castling.discard(move.to_square)

    if piece.piece_type == chess.PAWN:
        from_row = g.coords(move.from_square)[0]
        to_row = g.coords(move.to_square)[0]
        if abs(to_row - from_row) == 2:
            ep_square = g.index((from_row + to_row) // 2, g.coords(move.from_square)[1])

    cells[move.to_square] = chess.Piece(move.promotion, piece.color) if move.promotion else piece
    cells[move.from_square] = None

    clock = 0 if captured is not None or piece.piece_type == chess.PAWN else pos.halfmove_clock + 1
    return Position(pos.variant, tuple(cells), not pos.turn, frozenset(castling), ep_square, clock)

"""Static evaluator for tiers 2 and 3: material, piece-square tables and endgame mop-up."""

import math

import chess

from thinchess.config import CONFIG, EvalConfig
from thinchess.core.position import Geometry, Position

MATE_SCORE = 99999
MATE_THRESHOLD = MATE_SCORE - 1000


def distance_from_edge(geometry: Geometry, square: int) -> int:
    """Rows between the square and the nearer short edge of the board."""
    row, _ = geometry.coords(square)
    return min(row, geometry.height - 1 - row)


def king_distance(geometry: Geometry, sq1: int, sq2: int) -> int:
    """Chebyshev distance between two squares (king moves)."""
    r1, f1 = geometry.coords(sq1)
    r2, f2 = geometry.coords(sq2)
    return max(abs(r1 - r2), abs(f1 - f2))


def estimate_complexity(pos: Position, baseline: int = 12) -> float:
    """Piece count scaled by board size relative to the 1x12 board."""
    return pos.piece_count() * math.sqrt(pos.geometry.size / baseline)


class Evaluator:
    def __init__(self, cfg: EvalConfig = None):
        self.cfg = cfg or CONFIG.eval

    def evaluate(self, pos: Position) -> int:
        """Return static eval in centipawns, positive favors side to move."""
        g = pos.geometry
        endgame = self.is_endgame(pos)
        use_pst = g.height <= self.cfg.max_pst_dimension and g.width <= self.cfg.max_pst_dimension

        score = 0
        for sq, piece in pos.pieces():
            value = self.cfg.piece_values.get(chess.piece_name(piece.piece_type).upper(), 0)
            if use_pst:
                value += self._pst_value(g, sq, piece, endgame)
            score += value if piece.color == chess.WHITE else -value

        if endgame:
            score += self._mop_up(pos)

        return score if pos.turn == chess.WHITE else -score

    def material(self, pos: Position, color: chess.Color) -> int:
        return sum(self.cfg.piece_values.get(chess.piece_name(p.piece_type).upper(), 0) for _, p in pos.pieces(color))

    def is_endgame(self, pos: Position) -> bool:
        total = self.material(pos, chess.WHITE) + self.material(pos, chess.BLACK)
        return total < self.cfg.endgame_material_cp

    def _pst_value(self, g: Geometry, square: int, piece: chess.Piece, endgame: bool) -> int:
        p_name = chess.piece_name(piece.piece_type).upper()
        table = getattr(self.cfg, f"PST_{p_name}_{'EG' if endgame else 'MG'}", None) or getattr(self.cfg, f"PST_{p_name}", None)
        if not table:
            return 0
        row, file = g.coords(square)
        # tables are drawn with the owner's far edge on top
        adjusted = row if piece.color == chess.WHITE else g.height - 1 - row
        grid = self.cfg.pst_grid_size
        index = (adjusted * grid // g.height) * grid + file * grid // g.width
        return table[index]

    def _mop_up(self, pos: Position) -> int:
        """White-relative bonus for the side ahead in material driving the lone king to an edge."""
        diff = self.material(pos, chess.WHITE) - self.material(pos, chess.BLACK)
        if abs(diff) < self.cfg.mopup_min_advantage:
            return 0
        strong = chess.WHITE if diff > 0 else chess.BLACK
        strong_king = pos.king_square(strong)
        weak_king = pos.king_square(not strong)
        if strong_king is None or weak_king is None:
            return 0
        g = pos.geometry
        centre = (g.height - 1) // 2
        bonus = self.cfg.mopup_edge_weight * (centre - distance_from_edge(g, weak_king))
        bonus += self.cfg.mopup_proximity_weight * (g.height - king_distance(g, strong_king, weak_king))
        return bonus if strong == chess.WHITE else -bonus

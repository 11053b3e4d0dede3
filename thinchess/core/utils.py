from typing import Sequence

from thinchess.core.evaluator import MATE_SCORE, MATE_THRESHOLD
from thinchess.core.position import Geometry, Move


def format_info(tier, d, score, nodes, elapsed, pv_moves: Sequence[Move], geometry: Geometry) -> str:
    pv_str = " ".join(m.uci(geometry) for m in pv_moves) or "-"
    nps = int(nodes / elapsed) if elapsed > 0 else 0

    if abs(score) >= MATE_THRESHOLD:
        mate_in = (MATE_SCORE - abs(score) + 1) // 2
        score_str = f"mate {mate_in if score > 0 else -mate_in}"
    else:
        score_str = f"cp {score}"

    return f"info tier {tier} depth {d} score {score_str} nodes {nodes} nps {nps} time {int(elapsed * 1000)} pv {pv_str}"

# thinchess/config.py
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging
import os
import tomllib  # python >=3.11

logger = logging.getLogger(__name__)

# Defaults (centipawns)
PIECE_VALUES = {
    "PAWN": 100,
    "KNIGHT": 300,
    "BISHOP": 320,
    "ROOK": 500,
    "QUEEN": 900,
    "KING": 0,
}

# 6x6 piece-square tables, row 0 is the far edge as seen by the side that owns the piece.
PST_PAWN = [
    0, 0, 0, 0, 0, 0,
    50, 50, 50, 50, 50, 50,
    10, 10, 20, 30, 30, 10,
    5, 5, 10, 25, 25, 5,
    0, 0, 0, 20, 20, 0,
    5, -5, -10, 0, 0, -5,
]

PST_KNIGHT = [
    -50, -40, -30, -30, -40, -50,
    -40, -20, 0, 0, -20, -40,
    -30, 0, 10, 15, 10, -30,
    -30, 5, 15, 20, 15, -30,
    -40, -20, 0, 5, 0, -20,
    -50, -40, -30, -30, -40, -50,
]

PST_KING_MG = [
    -30, -40, -40, -50, -40, -30,
    -30, -40, -40, -50, -40, -30,
    -30, -40, -40, -50, -40, -30,
    -30, -40, -40, -50, -40, -30,
    -20, -30, -30, -40, -30, -20,
    20, 20, 0, 0, 10, 20,
]

PST_KING_EG = [
    -50, -40, -30, -20, -30, -40,
    -30, -20, -10, 0, -10, -20,
    -30, -10, 20, 30, 20, -10,
    -30, -10, 30, 40, 30, -10,
    -30, -10, 20, 30, 20, -10,
    -30, -30, 0, 0, 0, -30,
]

@dataclass
class SearchConfig:
    tier1_max_complexity: float = 6.0
    tier2_max_complexity: float = 12.0
    tier2_max_moves: int = 30
    tier1_max_nodes: int = 10_000
    tier1_max_tt_size: int = 50_000
    tier2_max_nodes: int = 50_000   # per iteration
    tier2_max_tt_size: int = 100_000
    tier2_max_time_ms: int = 2000   # soft deadline, checked between iterations
    tier2_max_depth: int = 20
    max_depth: int = 30             # absolute ply ceiling for every tier
    tier3_depth_small: int = 6
    tier3_depth_medium: int = 5
    tier3_depth_large: int = 4
    tier3_small_pieces: int = 8
    tier3_medium_pieces: int = 12
    cooperative_advantage_cp: int = 50
    rng_seed: Optional[int] = None


@dataclass
class EvalConfig:
    piece_values: Dict[str, int] = field(default_factory=lambda: PIECE_VALUES.copy())
    endgame_material_cp: int = 2600
    max_pst_dimension: int = 6
    pst_grid_size: int = 6
    baseline_board_size: int = 12
    mopup_min_advantage: int = 200
    mopup_edge_weight: int = 10
    mopup_proximity_weight: int = 4
    PST_PAWN: List[int] = field(default_factory=lambda: list(PST_PAWN))
    PST_KNIGHT: List[int] = field(default_factory=lambda: list(PST_KNIGHT))
    PST_KING_MG: List[int] = field(default_factory=lambda: list(PST_KING_MG))
    PST_KING_EG: List[int] = field(default_factory=lambda: list(PST_KING_EG))


@dataclass
class UIConfig:
    engine_name: str = "ThinChess"
    engine_author: str = "ThinChess contributors"
    default_variant: str = "thin"
    api_port: int = 8000


@dataclass
class Config:
    search: SearchConfig = field(default_factory=SearchConfig)
    eval: EvalConfig = field(default_factory=EvalConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    log_level: str = "INFO"

    @staticmethod
    def load_from_toml(path: str = "config.toml") -> "Config":
        cfg = Config()
        if not os.path.exists(path):
            return cfg
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        for section in ("search", "eval", "ui"):
            target = getattr(cfg, section)
            for k, v in raw.get(section, {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)
                else:
                    logger.warning("Ignoring unknown config key %s.%s", section, k)
        if "log_level" in raw:
            cfg.log_level = str(raw["log_level"])
        return cfg


# single globally importable config instance
CONFIG = Config.load_from_toml(os.environ.get("THINCHESS_CONFIG_TOML", "config.toml"))
# allow env override of the tier-2 time budget for quick debugging
override_time = os.environ.get("THINCHESS_TIER2_TIME_MS")
if override_time:
    try:
        CONFIG.search.tier2_max_time_ms = int(override_time)
    except ValueError:
        logger.warning("THINCHESS_TIER2_TIME_MS must be an integer, got %r", override_time)

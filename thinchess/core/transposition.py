"""Bounded transposition table keyed by canonical position keys.

Two tables live in every SearchEngine:

- the exact table, filled by the tier-1 solver, holds only proven results
  (``proven=True``, ``verdict`` set, ``depth`` is the distance to the end
  of the game in plies);
- the bounded table, filled by tiers 2 and 3, holds depth-tagged alpha-beta
  bounds whose ``flag`` says whether ``value`` is exact, a lower bound or an
  upper bound.

Once a table holds ``max_entries`` keys it refuses new keys; existing keys
may still be replaced by entries searched at least as deep.

Usage (example):

    tt = TranspositionTable(max_entries=1000)
    tt.store(key, depth=3, value=120, flag=TT_EXACT, best_move=move)
    entry = tt.get(key)
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Optional

from thinchess.core.position import Move
from thinchess.core.rules import Verdict

TT_EXACT = 0
TT_ALPHA = 1  # upper bound: search failed low
TT_BETA = 2   # lower bound: search failed high


@dataclass
class TTEntry:
    key: str
    depth: int
    value: int
    flag: int
    best_move: Optional[Move]
    verdict: Optional[Verdict] = None
    proven: bool = False

    def __iter__(self):
        return iter((self.key, self.depth, self.value, self.flag, self.best_move))


class TranspositionTable:
    def __init__(self, max_entries: int = 100_000):
        self.max_entries = max_entries
        self._table: Dict[str, TTEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.probes = 0
        self.rejected = 0

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, key: str) -> bool:
        return key in self._table

    @property
    def full(self) -> bool:
        return len(self._table) >= self.max_entries

    def get(self, key: str) -> Optional[TTEntry]:
        with self._lock:
            self.probes += 1
            entry = self._table.get(key)
            if entry is not None:
                self.hits += 1
        return entry

    def store(
        self,
        key: str,
        depth: int,
        value: int,
        flag: int,
        best_move: Optional[Move],
        verdict: Optional[Verdict] = None,
        proven: bool = False,
    ) -> bool:
        """Store an entry; returns False when the table keeps what it had."""
        with self._lock:
            existing = self._table.get(key)
            if existing is None:
                if len(self._table) >= self.max_entries:
                    self.rejected += 1
                    return False
            elif existing.proven and not proven:
                return False
            elif existing.depth > depth and existing.proven == proven:
                return False
            self._table[key] = TTEntry(key, depth, value, flag, best_move, verdict, proven)
            return True

    def clear(self):
        with self._lock:
            self._table.clear()
            self.hits = self.probes = self.rejected = 0

    def stats(self) -> dict:
        return {
            "entries": len(self._table),
            "max_entries": self.max_entries,
            "probes": self.probes,
            "hits": self.hits,
            "rejected": self.rejected,
        }

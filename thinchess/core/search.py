"""Tiered solver.

Tier 1 solves small positions exactly by labelling the reachable position
graph backwards from its terminal nodes. Tier 2 runs iterative-deepening
negamax alpha-beta under node and time budgets. Tier 3 runs a fixed-depth
negamax for positions too large for either.
"""
import heapq
import logging
import random
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple

import chess

from thinchess.config import CONFIG, SearchConfig
from thinchess.core.evaluator import MATE_SCORE, MATE_THRESHOLD, Evaluator, estimate_complexity
from thinchess.core.movegen import apply_move, generate_legal_moves, is_capture
from thinchess.core.position import Move, Position, position_key
from thinchess.core.rules import (
    DEFAULT_RULES,
    FIFTY_MOVE_PLIES,
    AIStrategy,
    RuleSet,
    Terminal,
    Verdict,
    classify,
)
from thinchess.core.strategy import Candidate, select_candidate
from thinchess.core.transposition import TT_ALPHA, TT_BETA, TT_EXACT, TranspositionTable
from thinchess.core.utils import format_info

logger = logging.getLogger(__name__)

INF = 1000000

Keyer = Callable[[Position], str]


class SearchAborted(Exception):
    """Raised inside a tier when its node budget runs out."""


@dataclass(frozen=True)
class SolveResult:
    move: Optional[Move]
    verdict: Verdict
    score: int
    proven: bool
    tier: int
    depth: int = 0
    nodes: int = 0
    elapsed_ms: int = 0
    candidates: Tuple[Candidate, ...] = ()
    terminal: Optional[Terminal] = None
    pv: Tuple[Move, ...] = ()
    strategy: AIStrategy = AIStrategy.PERFECT

    @property
    def plies_to_end(self) -> Optional[int]:
        """Plies until the proven win or loss is over, if the score carries one."""
        if self.proven and abs(self.score) >= MATE_THRESHOLD:
            return MATE_SCORE - abs(self.score)
        return None

    @property
    def label(self) -> str:
        if self.terminal is not None:
            return self.terminal.describe()
        if self.proven:
            return f"proven {self.verdict.value}"
        return "engine estimate"


class _TierOutcome(NamedTuple):
    candidates: List[Candidate]
    depth: int
    pv: Tuple[Move, ...]


class _Budget:
    __slots__ = ("limit", "nodes")

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit
        self.nodes = 0

    def tick(self):
        if self.limit is not None and self.nodes >= self.limit:
            raise SearchAborted(f"node budget of {self.limit} exhausted")
        self.nodes += 1


class _Node:
    __slots__ = ("pos", "ply", "children", "parents", "remaining", "verdict", "dtm", "best_move", "frontier", "cached")

    def __init__(self, pos: Position, ply: int):
        self.pos = pos
        self.ply = ply
        self.children: Dict[str, Move] = {}
        self.parents: List[str] = []
        self.remaining = 0
        self.verdict: Optional[Verdict] = None
        self.dtm = 0
        self.best_move: Optional[Move] = None
        self.frontier = False
        self.cached = False


def _verdict_score(verdict: Verdict, plies: int) -> int:
    if verdict is Verdict.WIN:
        return MATE_SCORE - plies
    if verdict is Verdict.LOSS:
        return -(MATE_SCORE - plies)
    return 0


def _score_to_tt(score: int, ply: int) -> int:
    if score >= MATE_THRESHOLD:
        return score + ply
    if score <= -MATE_THRESHOLD:
        return score - ply
    return score


def _score_from_tt(score: int, ply: int) -> int:
    if score >= MATE_THRESHOLD:
        return score - ply
    if score <= -MATE_THRESHOLD:
        return score + ply
    return score


def _candidate(move: Move, score: int, exact: bool) -> Candidate:
    if score >= MATE_THRESHOLD and exact:
        return Candidate(move, score, Verdict.WIN, True, exact)
    if score <= -MATE_THRESHOLD:
        return Candidate(move, score, Verdict.LOSS, True, exact)
    return Candidate(move, score, Verdict.UNKNOWN, False, exact)


class SearchEngine:
    def __init__(
        self,
        evaluator: Optional[Evaluator] = None,
        config: Optional[SearchConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.cfg = config or CONFIG.search
        self.evaluator = evaluator or Evaluator()
        self.rng = rng or random.Random(self.cfg.rng_seed)
        self.exact_tt = TranspositionTable(self.cfg.tier1_max_tt_size)
        self.tt = TranspositionTable(self.cfg.tier2_max_tt_size)
        self.history = defaultdict(lambda: defaultdict(int))
        self.killers = [[None] * 2 for _ in range(self.cfg.max_depth + 1)]
        self.nodes = 0
        self.iteration_nodes: List[int] = []

    def clear(self):
        """Forget everything learned so far; called on new game, position load and rule changes."""
        self.exact_tt.clear()
        self.tt.clear()
        self.history.clear()
        self.killers = [[None] * 2 for _ in range(self.cfg.max_depth + 1)]

    # ── tier selection ──────────────────────────────────────────────────

    def complexity(self, pos: Position) -> float:
        return estimate_complexity(pos, self.evaluator.cfg.baseline_board_size)

    def select_tier(self, pos: Position, moves: Sequence[Move]) -> int:
        complexity = self.complexity(pos)
        if complexity <= self.cfg.tier1_max_complexity:
            return 1
        if complexity <= self.cfg.tier2_max_complexity and len(moves) <= self.cfg.tier2_max_moves:
            return 2
        return 3

    def tier3_depth(self, piece_count: int) -> int:
        if piece_count <= self.cfg.tier3_small_pieces:
            return self.cfg.tier3_depth_small
        if piece_count <= self.cfg.tier3_medium_pieces:
            return self.cfg.tier3_depth_medium
        return self.cfg.tier3_depth_large

    def _needs_clock(self, pos: Position, rules: RuleSet) -> bool:
        # the clock only matters when the fifty-move draw is reachable inside the search
        return rules.fifty_move and pos.halfmove_clock + self.cfg.max_depth >= FIFTY_MOVE_PLIES

    @staticmethod
    def _keyer(rules: RuleSet, with_clock: bool) -> Keyer:
        def keyer(p: Position) -> str:
            return position_key(p, with_clock, rules.castling, rules.en_passant)

        return keyer

    @staticmethod
    def _outlasts_clock(pos: Position, rules: RuleSet, candidates: Sequence[Candidate]) -> bool:
        """True if a proven win or loss among ``candidates`` needs more plies than the fifty-move rule leaves.

        Clock-free keys let a proven result cross the fifty-move horizon, since
        cached distances are not bounded by the ply ceiling.
        """
        if not rules.fifty_move:
            return False
        return any(
            c.proven and abs(c.score) >= MATE_THRESHOLD
            and pos.halfmove_clock + MATE_SCORE - abs(c.score) >= FIFTY_MOVE_PLIES
            for c in candidates
        )

    def _run_tiers(self, tier, pos, rules, moves, keyer, exhaustive, start) -> Tuple[_TierOutcome, int]:
        outcome = None
        if tier == 1:
            outcome = self._run_tier1(pos, rules, keyer, start)
            if outcome is None:
                tier = 2
        if tier == 2:
            outcome = self._run_tier2(pos, rules, moves, keyer, exhaustive, start)
        elif tier == 3:
            outcome = self._run_tier3(pos, rules, moves, keyer, exhaustive, start)
        return outcome, tier

    # ── entry point ─────────────────────────────────────────────────────

    def choose_move(
        self,
        pos: Position,
        rules: RuleSet = DEFAULT_RULES,
        strategy: Optional[AIStrategy] = None,
        history: Optional[Sequence[str]] = None,
    ) -> SolveResult:
        pos.validate()
        strategy = AIStrategy(strategy or rules.ai_strategy or AIStrategy.PERFECT)
        start = time.perf_counter()
        self.nodes = 0
        self.iteration_nodes = []

        moves = generate_legal_moves(pos, rules)
        term = classify(pos, rules, history, moves)
        if term is not None:
            verdict = term.verdict_for(pos.turn)
            logger.debug("Root is already terminal: %s", term.value)
            return SolveResult(
                None, verdict, _verdict_score(verdict, 0), True, 0,
                elapsed_ms=int((time.perf_counter() - start) * 1000), terminal=term, strategy=strategy,
            )

        with_clock = self._needs_clock(pos, rules)
        exhaustive = strategy is not AIStrategy.PERFECT
        tier = self.select_tier(pos, moves)
        logger.debug("Complexity %.2f, %d legal moves -> tier %d", self.complexity(pos), len(moves), tier)

        outcome, tier = self._run_tiers(tier, pos, rules, moves, self._keyer(rules, with_clock), exhaustive, start)
        if not with_clock and self._outlasts_clock(pos, rules, outcome.candidates):
            logger.info("Proven line runs past the fifty-move horizon, solving again with the clock in the keys")
            outcome, tier = self._run_tiers(tier, pos, rules, moves, self._keyer(rules, True), exhaustive, start)

        chosen = select_candidate(outcome.candidates, strategy, self.rng, self.cfg.cooperative_advantage_cp)
        pv = outcome.pv if outcome.pv and outcome.pv[0] == chosen.move else (chosen.move,)
        elapsed = time.perf_counter() - start
        result = SolveResult(
            chosen.move, chosen.verdict, chosen.score, chosen.proven, tier,
            depth=outcome.depth, nodes=self.nodes, elapsed_ms=int(elapsed * 1000),
            candidates=tuple(outcome.candidates), pv=pv, strategy=strategy,
        )
        logger.info(
            "Tier %d (%s) plays %s: %s, score %d, %d nodes in %d ms",
            tier, strategy.value, chosen.move.uci(pos.geometry), result.label,
            chosen.score, self.nodes, result.elapsed_ms,
        )
        return result

    # ── tier 1: exhaustive solve ────────────────────────────────────────

    def _run_tier1(self, pos: Position, rules: RuleSet, keyer: Keyer, start: float) -> Optional[_TierOutcome]:
        budget = _Budget(self.cfg.tier1_max_nodes)
        try:
            graph = self._expand(pos, rules, keyer, budget)
        except SearchAborted as e:
            self.nodes += budget.nodes
            logger.info("Tier 1 inconclusive (%s), falling back to tier 2", e)
            return None
        self.nodes += budget.nodes
        self._label(graph)

        root = graph[keyer(pos)]
        if root.verdict is Verdict.UNKNOWN:
            logger.info("Tier 1 hit the depth ceiling without a verdict, falling back to tier 2")
            return None
        self._store_solved(graph)

        candidates = []
        for child_key, move in root.children.items():
            child = graph[child_key]
            verdict = child.verdict.flipped()
            if verdict is Verdict.UNKNOWN:
                candidates.append(Candidate(move, 0, Verdict.UNKNOWN, False))
            else:
                candidates.append(Candidate(move, _verdict_score(verdict, child.dtm + 1), verdict, True))

        pv = []
        node = root
        while node is not None and node.best_move is not None and len(pv) < self.cfg.max_depth:
            pv.append(node.best_move)
            child_key = next((k for k, m in node.children.items() if m == node.best_move), None)
            node = graph.get(child_key) if child_key else None
        logger.debug(format_info(1, root.dtm, _verdict_score(root.verdict, root.dtm), budget.nodes,
                                 time.perf_counter() - start, pv, pos.geometry))
        return _TierOutcome(candidates, root.dtm, tuple(pv))

    def _expand(self, root_pos: Position, rules: RuleSet, keyer: Keyer, budget: _Budget) -> Dict[str, _Node]:
        """Breadth-first walk of every position reachable within the depth ceiling."""
        root_key = keyer(root_pos)
        graph = {root_key: _Node(root_pos, 0)}
        queue = deque([root_key])
        while queue:
            key = queue.popleft()
            node = graph[key]
            if key != root_key:
                entry = self.exact_tt.get(key)
                if entry is not None and entry.proven:
                    node.verdict, node.dtm, node.best_move, node.cached = entry.verdict, entry.depth, entry.best_move, True
                    continue

            budget.tick()
            moves = generate_legal_moves(node.pos, rules)
            term = classify(node.pos, rules, None, moves)
            if term is not None:
                node.verdict = term.verdict_for(node.pos.turn)
                continue
            if node.ply >= self.cfg.max_depth:
                node.frontier = True
                continue

            for move in moves:
                child_pos = apply_move(node.pos, move)
                child_key = keyer(child_pos)
                if child_key in node.children:
                    continue
                child = graph.get(child_key)
                if child is None:
                    child = graph[child_key] = _Node(child_pos, node.ply + 1)
                    queue.append(child_key)
                node.children[child_key] = move
                child.parents.append(key)
            node.remaining = len(node.children)
        return graph

    def _label(self, graph: Dict[str, _Node]):
        """Propagate wins and losses backwards, shortest wins and longest defences first."""
        heap = []
        for n, (key, node) in enumerate(graph.items()):
            if node.verdict in (Verdict.WIN, Verdict.LOSS):
                heap.append((node.dtm, n, key))
        heapq.heapify(heap)
        counter = len(heap)

        while heap:
            dtm, _, key = heapq.heappop(heap)
            node = graph[key]
            for parent_key in node.parents:
                parent = graph[parent_key]
                if parent.verdict is not None:
                    continue
                if node.verdict is Verdict.LOSS:
                    parent.verdict = Verdict.WIN
                else:
                    parent.remaining -= 1
                    if parent.remaining:
                        continue
                    parent.verdict = Verdict.LOSS
                parent.dtm = dtm + 1
                parent.best_move = parent.children[key]
                counter += 1
                heapq.heappush(heap, (parent.dtm, counter, parent_key))

        # whatever is left either escapes into unexplored territory or cycles forever
        tainted: Set[str] = set()
        queue = deque(k for k, n in graph.items() if n.frontier)
        tainted.update(queue)
        while queue:
            for parent_key in graph[queue.popleft()].parents:
                if parent_key not in tainted and graph[parent_key].verdict is None:
                    tainted.add(parent_key)
                    queue.append(parent_key)

        for key, node in graph.items():
            if node.verdict is None:
                node.verdict = Verdict.UNKNOWN if key in tainted else Verdict.DRAW
        for node in graph.values():
            if node.verdict is Verdict.DRAW and node.best_move is None and node.children:
                node.best_move = next(
                    (m for k, m in node.children.items() if graph[k].verdict is Verdict.DRAW), None
                )

    def _store_solved(self, graph: Dict[str, _Node]):
        for key, node in graph.items():
            if node.cached or node.verdict is Verdict.UNKNOWN:
                continue
            self.exact_tt.store(key, node.dtm, _verdict_score(node.verdict, node.dtm), TT_EXACT,
                                node.best_move, node.verdict, proven=True)

    # ── tier 2: iterative deepening ─────────────────────────────────────

    def _run_tier2(self, pos, rules, moves, keyer, exhaustive, start) -> _TierOutcome:
        deadline = start + self.cfg.tier2_max_time_ms / 1000.0
        best: Optional[List[Candidate]] = None
        completed = 0
        pv: Tuple[Move, ...] = ()

        for d in range(1, self.cfg.tier2_max_depth + 1):
            if d > 1 and time.perf_counter() >= deadline:
                logger.debug("Tier 2 deadline reached after depth %d", completed)
                break
            budget = _Budget(self.cfg.tier2_max_nodes)
            try:
                candidates = self._search_root(pos, rules, moves, d, budget, keyer, exhaustive)
            except SearchAborted:
                self.nodes += budget.nodes
                self.iteration_nodes.append(budget.nodes)
                logger.debug("Tier 2 abandoned depth %d after %d nodes", d, budget.nodes)
                break
            self.nodes += budget.nodes
            self.iteration_nodes.append(budget.nodes)
            best, completed = candidates, d

            top = max(candidates, key=lambda c: c.score)
            pv = tuple(self._get_pv_line(pos, rules, keyer, d))
            logger.debug(format_info(2, d, top.score, self.nodes, time.perf_counter() - start, pv, pos.geometry))
            if abs(top.score) >= MATE_THRESHOLD:
                break

        if best is None:
            logger.info("Tier 2 finished no iteration, ordering moves by static evaluation")
            best = self._static_candidates(pos, moves)
        return _TierOutcome(best, completed, pv)

    # ── tier 3: fixed depth ─────────────────────────────────────────────

    def _run_tier3(self, pos, rules, moves, keyer, exhaustive, start) -> _TierOutcome:
        depth = min(self.tier3_depth(pos.piece_count()), self.cfg.max_depth)
        budget = _Budget()
        candidates = self._search_root(pos, rules, moves, depth, budget, keyer, exhaustive)
        self.nodes += budget.nodes
        pv = tuple(self._get_pv_line(pos, rules, keyer, depth))
        top = max(candidates, key=lambda c: c.score)
        logger.debug(format_info(3, depth, top.score, self.nodes, time.perf_counter() - start, pv, pos.geometry))
        return _TierOutcome(candidates, depth, pv)

    def _static_candidates(self, pos: Position, moves: Sequence[Move]) -> List[Candidate]:
        return [Candidate(m, -self.evaluator.evaluate(apply_move(pos, m)), exact=False) for m in moves]

    # ── negamax ─────────────────────────────────────────────────────────

    def _search_root(self, pos, rules, moves, depth, budget, keyer, exhaustive) -> List[Candidate]:
        """Score every root move. With ``exhaustive`` each move gets a full window so all scores are exact."""
        root_key = keyer(pos)
        path = {root_key}
        entry = self.tt.get(root_key)
        tt_move = entry.best_move if entry else None

        alpha = -INF
        best_score = -INF
        best_move = None
        candidates = []
        for move in self._order_moves(pos, moves, tt_move, 0):
            child = apply_move(pos, move)
            if exhaustive:
                score = -self._negamax(child, rules, depth - 1, -INF, INF, 1, path, budget, keyer)
                exact = True
            else:
                score = -self._negamax(child, rules, depth - 1, -INF, -alpha, 1, path, budget, keyer)
                exact = best_move is None or score > alpha
            candidates.append(_candidate(move, score, exact))
            if score > best_score:
                best_score, best_move = score, move
            alpha = max(alpha, score)

        self.tt.store(root_key, depth, _score_to_tt(best_score, 0), TT_EXACT, best_move)
        return candidates

    def _negamax(self, pos: Position, rules: RuleSet, depth: int, alpha: int, beta: int,
                 ply: int, path: Set[str], budget: _Budget, keyer: Keyer) -> int:
        budget.tick()
        key = keyer(pos)
        if key in path:
            return 0

        proven = self.exact_tt.get(key)
        if proven is not None and proven.proven:
            return _verdict_score(proven.verdict, ply + proven.depth)

        # TT Lookup
        tt_entry = self.tt.get(key)
        tt_move = None
        if tt_entry:
            tt_move = tt_entry.best_move
            if tt_entry.depth >= depth:
                value = _score_from_tt(tt_entry.value, ply)
                if tt_entry.flag == TT_EXACT: return value
                elif tt_entry.flag == TT_BETA: alpha = max(alpha, value)
                elif tt_entry.flag == TT_ALPHA: beta = min(beta, value)
                if alpha >= beta: return value
        alpha_orig = alpha

        moves = generate_legal_moves(pos, rules)
        term = classify(pos, rules, None, moves)
        if term is not None:
            return _verdict_score(term.verdict_for(pos.turn), ply)
        if depth <= 0 or ply >= self.cfg.max_depth:
            return self.evaluator.evaluate(pos)

        best_score = -INF
        best_move_found = None
        path.add(key)
        try:
            for move in self._order_moves(pos, moves, tt_move, ply):
                score = -self._negamax(apply_move(pos, move), rules, depth - 1, -beta, -alpha, ply + 1, path, budget, keyer)

                if score > best_score:
                    best_score = score
                    best_move_found = move

                if score > alpha:
                    alpha = score
                    if alpha >= beta:
                        if not is_capture(pos, move):
                            self.history[move.from_square][move.to_square] += depth * depth
                            if move != self.killers[ply][0]:
                                self.killers[ply][1] = self.killers[ply][0]
                                self.killers[ply][0] = move
                        break
        finally:
            path.discard(key)

        if best_score <= alpha_orig:
            flag = TT_ALPHA
        elif best_score >= beta:
            flag = TT_BETA
        else:
            flag = TT_EXACT

        self.tt.store(key, depth, _score_to_tt(best_score, ply), flag, best_move_found)
        return best_score

    def _order_moves(self, pos: Position, moves: Sequence[Move], tt_move: Optional[Move], ply: int) -> List[Move]:
        scores = []
        for move in moves:
            if move == tt_move:
                scores.append(2000000)
            elif is_capture(pos, move):
                scores.append(self._mvv_lva(pos, move) + 100000)
            elif move.promotion:
                scores.append(95000 + move.promotion)
            elif move == self.killers[ply][0]:
                scores.append(90000)
            elif move == self.killers[ply][1]:
                scores.append(80000)
            else:
                scores.append(self.history[move.from_square][move.to_square])

        return [m for _, m in sorted(zip(scores, moves), key=lambda x: x[0], reverse=True)]

    def _mvv_lva(self, pos: Position, move: Move) -> int:
        attacker = pos.cells[move.from_square]
        victim = pos.cells[move.to_square]
        victim_type = victim.piece_type if victim else chess.PAWN  # en passant
        return (victim_type * 10) - attacker.piece_type

    def _get_pv_line(self, pos: Position, rules: RuleSet, keyer: Keyer, depth: int) -> List[Move]:
        pv_moves = []
        curr = pos
        seen = {keyer(curr)}

        for _ in range(depth):
            key = keyer(curr)
            entry = self.exact_tt.get(key) or self.tt.get(key)
            if not entry or not entry.best_move:
                break
            move = entry.best_move
            if move not in generate_legal_moves(curr, rules):
                break

            pv_moves.append(move)
            curr = apply_move(curr, move)

            # cycle detection
            key = keyer(curr)
            if key in seen:
                break
            seen.add(key)

        return pv_moves


def choose_move(
    pos: Position,
    rules: RuleSet = DEFAULT_RULES,
    strategy: Optional[AIStrategy] = None,
    config: Optional[SearchConfig] = None,
    rng: Optional[random.Random] = None,
) -> SolveResult:
    """One-shot solve with a fresh engine and empty caches."""
    return SearchEngine(config=config, rng=rng).choose_move(pos, rules, strategy)

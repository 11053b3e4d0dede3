"""Core engine components: positions, legality, rules, evaluator, search, and transposition table."""

from .board import ChessBoard
from .evaluator import Evaluator
from .position import Move, Position, PositionError, Variant, decode, encode
from .rules import AIStrategy, RuleSet, RuleSetError, Terminal, Verdict, terminal
from .search import SearchEngine, SolveResult
from .transposition import TranspositionTable

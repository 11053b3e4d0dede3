import logging
import random
from typing import Optional

from thinchess.config import CONFIG, Config
from thinchess.core.board import ChessBoard
from thinchess.core.evaluator import Evaluator
from thinchess.core.position import Variant
from thinchess.core.rules import DEFAULT_RULES, AIStrategy, RuleSet
from thinchess.core.search import SearchEngine, SolveResult

logger = logging.getLogger(__name__)


class Engine:
    """A game session: one board, its history and the solver caches that belong to it."""

    def __init__(self, variant=Variant.THIN, code: str = None, length: Optional[int] = None,
                 rules: RuleSet = DEFAULT_RULES, strategy: Optional[AIStrategy] = None,
                 config: Config = None, rng: Optional[random.Random] = None):
        config = config or CONFIG
        self.board = ChessBoard(code, variant, length, rules)
        self.search = SearchEngine(Evaluator(config.eval), config.search, rng)
        self.strategy = AIStrategy(strategy) if strategy else None

    @property
    def rules(self) -> RuleSet:
        return self.board.rules

    def new_game(self):
        self.board.reset()
        self.search.clear()

    def load_position(self, code: str, variant=None, length: Optional[int] = None):
        self.board.set_position(code, variant, length)
        self.search.clear()
        logger.info("Loaded %s position %s", self.board.variant.value, self.board.get_code())

    def set_rules(self, rules: RuleSet):
        self.board.rules = rules
        self.search.clear()

    def get_best_move(self) -> SolveResult:
        return self.search.choose_move(self.board.position, self.board.rules, self.strategy, self.board.history)

    def play_best_move(self) -> SolveResult:
        result = self.get_best_move()
        if result.move is not None:
            self.board.push(result.move)
        return result

    def make_move(self, move_uci: str) -> bool:
        return self.board.make_move(move_uci)

    def undo_move(self):
        self.board.undo_move()

    def legal_moves(self):
        return self.board.get_legal_moves()

    def terminal(self):
        return self.board.terminal()

    def print_board(self):
        self.board.print_board()

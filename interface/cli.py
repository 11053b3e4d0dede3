"""Play thin or skinny chess against the engine in a terminal."""

import argparse
import logging

import chess

from thinchess.config import CONFIG
from thinchess.core.position import PositionError, Variant
from thinchess.core.rules import AIStrategy, RuleSet
from thinchess.main import Engine


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Play thin (1xN) or skinny (Nx2) chess against the engine.")
    parser.add_argument("--variant", choices=[v.value for v in Variant], default=CONFIG.ui.default_variant)
    parser.add_argument("--position", help="encoded start position, e.g. 'wk,wn,wr,x,x,bn,br,bk:w'")
    parser.add_argument("--length", type=int, help="board length when it cannot be read off the position")
    parser.add_argument("--human", choices=["w", "b", "none"], default="w", help="side played from the keyboard")
    parser.add_argument("--strategy", choices=[s.value for s in AIStrategy], default=None)
    parser.add_argument("--castling", action="store_true")
    parser.add_argument("--en-passant", action="store_true")
    parser.add_argument("--race", action="store_true", help="win by reaching the far rank")
    parser.add_argument("--material", action="store_true", help="stalemate is decided by piece count")
    parser.add_argument("--max-plies", type=int, default=300)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=CONFIG.log_level)

    rules = RuleSet(
        castling=args.castling,
        en_passant=args.en_passant,
        race_to_back_rank=args.race,
        material_count_win=args.material,
    )
    try:
        engine = Engine(args.variant, args.position, args.length, rules, args.strategy)
    except PositionError as e:
        print(f"Invalid position: {e}")
        return 2

    human = {"w": chess.WHITE, "b": chess.BLACK}.get(args.human)
    board = engine.board
    plies = 0
    while not board.is_game_over() and plies < args.max_plies:
        board.print_board()
        print("----------------------------")

        if board.position.turn == human:
            user_move = input("Enter your move (e.g. a1a2), 'undo' or 'quit': ").strip()
            if user_move == "quit":
                print("Game abandoned")
                return 0
            if user_move == "undo":
                # take back the engine reply as well
                engine.undo_move()
                engine.undo_move()
                continue
            if not engine.make_move(user_move):
                print("Illegal move, try again.")
                continue
        else:
            result = engine.play_best_move()
            print(f"Engine plays: {result.move.uci(board.geometry)} | tier {result.tier} | "
                  f"{result.label} | score {result.score}")
        plies += 1

    board.print_board()
    print("Game Over")
    term = board.terminal()
    print(f"Result: {term.describe() if term else 'unfinished'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

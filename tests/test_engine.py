"""
Unit test suite for the ThinChess rules engine and solver.

Covers:
- Position codec (thin and skinny encodings, extended state, bad input)
- Move generation (every piece, pins, castling, en passant, promotion)
- Terminal classification (mate, stalemate, material, race, fifty, threefold)
- Rule sets (validation, camelCase aliases)
- Evaluator (material, piece-square tables, mop-up)
- Transposition table (capacity, replacement, proven entries)
- Strategy selection (perfect, aggressive, cooperative)
- Search (tier selection, exact solving, budgets, fallbacks)
"""

import random

import chess
import pytest

from thinchess.config import EvalConfig, SearchConfig
from thinchess.core.board import ChessBoard
from thinchess.core.evaluator import (
    MATE_SCORE,
    MATE_THRESHOLD,
    Evaluator,
    distance_from_edge,
    estimate_complexity,
    king_distance,
)
from thinchess.core.movegen import apply_move, find_king, is_attacked, legal_moves
from thinchess.core.position import (
    START_POSITIONS,
    InvariantViolation,
    Move,
    PositionError,
    Variant,
    decode,
    encode,
    geometry_for,
    position_key,
    start_position,
)
from thinchess.core.rules import (
    AIStrategy,
    RuleSet,
    RuleSetError,
    Terminal,
    Verdict,
    terminal,
)
from thinchess.core.search import SearchEngine, choose_move
from thinchess.core.strategy import Candidate, select_candidate
from thinchess.core.transposition import TT_ALPHA, TT_BETA, TT_EXACT, TranspositionTable
from thinchess.core.utils import format_info

SKINNY = Variant.SKINNY

FAST = dict(tier2_max_time_ms=200, tier2_max_nodes=5000)


def targets(pos, rules=RuleSet(), square=None):
    return {m.to_square for m in legal_moves(pos, rules) if square is None or m.from_square == square}


# ════════════════════════════════════════════════════════════════════════════
#  POSITION CODEC
# ════════════════════════════════════════════════════════════════════════════

class TestPositionCodec:
    def test_thin_start_round_trip(self):
        pos = start_position(Variant.THIN)
        assert encode(pos) == START_POSITIONS[Variant.THIN]
        assert pos.geometry.size == 12
        assert pos.turn == chess.WHITE

    def test_skinny_start_round_trip(self):
        pos = start_position(SKINNY)
        assert encode(pos) == START_POSITIONS[SKINNY]
        assert pos.geometry.height == 10
        assert pos.geometry.width == 2

    def test_length_is_read_off_the_code(self):
        pos = decode("wk,wn,wr,.,.,bn,br,bk")
        assert pos.geometry.height == 8
        assert pos.turn == chess.WHITE
        assert pos.cells[3] is None

    def test_explicit_length_mismatch(self):
        with pytest.raises(PositionError) as exc:
            decode("wk,x,x,bk", length=12)
        assert exc.value.field == "cells"

    def test_side_to_move(self):
        assert decode("bk,x,x,x,x,x,x,x,x,x,x,wk:b").turn == chess.BLACK

    def test_bad_piece_token(self):
        with pytest.raises(PositionError) as exc:
            decode("bk,zz,x,wk")
        assert exc.value.token == "zz"

    def test_bishop_not_allowed_on_thin_board(self):
        with pytest.raises(PositionError):
            decode("bk,bb,x,x,x,wk")

    def test_missing_king(self):
        with pytest.raises(PositionError) as exc:
            decode("bk,x,x,x,wr,x")
        assert "white king" in str(exc.value)

    def test_two_kings_same_colour(self):
        with pytest.raises(PositionError):
            decode("bk,bk,x,x,wk,x")

    def test_board_too_short(self):
        with pytest.raises(PositionError):
            decode("bk,wk")

    def test_wrong_field_count(self):
        with pytest.raises(PositionError) as exc:
            decode("bk,x,x,wk:w:-")
        assert exc.value.field == "code"

    def test_bad_side_field(self):
        with pytest.raises(PositionError):
            decode("bk,x,x,wk:q")

    def test_side_not_to_move_in_check(self):
        with pytest.raises(PositionError) as exc:
            decode("x,x,x,x,wk,x,x,bk,wr,x,x,x:w")
        assert exc.value.field == "turn"
        # the same cells are fine with the checked side to move
        assert decode("x,x,x,x,wk,x,x,bk,wr,x,x,x:b").turn == chess.BLACK

    def test_extended_state_round_trip(self):
        code = "x,x,x,x,x,wk,x,x,x,x,x,bk:w:-:-:42"
        pos = decode(code)
        assert pos.halfmove_clock == 42
        assert encode(pos) == code

    def test_bad_clock(self):
        with pytest.raises(PositionError) as exc:
            decode("x,x,x,x,x,wk,x,x,x,x,x,bk:w:-:-:soon")
        assert exc.value.field == "halfmove"

    def test_ep_off_board(self):
        with pytest.raises(PositionError):
            decode("x,bk/x,x/x,x/x,x/x,x/x,x/x,x/x,x/x,x/wk,x:w:-:40:0", SKINNY)

    def test_default_castling_rights(self):
        pos = start_position(Variant.THIN)
        # every rook sharing the file with a king on its home square
        assert pos.castling == frozenset({1, 3, 8, 10})

    def test_square_names(self):
        g = geometry_for(Variant.THIN)
        assert g.square_name(11) == "a1"
        assert g.square_name(0) == "a12"
        assert g.parse_square("a5") == 7
        s = geometry_for(SKINNY)
        assert s.square_name(19) == "b1"
        assert s.parse_square("a10") == 0

    def test_parse_square_off_board(self):
        with pytest.raises(PositionError):
            geometry_for(Variant.THIN).parse_square("b3")

    def test_move_text(self):
        g = geometry_for(SKINNY)
        move = Move.from_uci("a9a10r", g)
        assert move == Move(2, 0, chess.ROOK)
        assert move.uci(g) == "a9a10r"

    def test_move_text_garbage(self):
        g = geometry_for(Variant.THIN)
        for text in ("zzzz", "", "12345", "a1"):
            with pytest.raises(PositionError):
                Move.from_uci(text, g)

    def test_key_ignores_excluded_fields(self):
        a = decode("x,x,x,x,x,wk,x,x,x,x,x,bk:w:-:-:3")
        b = decode("x,x,x,x,x,wk,x,x,x,x,x,bk:w:-:-:9")
        assert position_key(a) == position_key(b)
        assert position_key(a, include_clock=True) != position_key(b, include_clock=True)

    def test_ascii_has_one_line_per_rank(self):
        lines = start_position(SKINNY).ascii().splitlines()
        assert len(lines) == 11
        assert lines[0].startswith("10")


# ════════════════════════════════════════════════════════════════════════════
#  MOVE GENERATION
# ════════════════════════════════════════════════════════════════════════════

class TestMoveGeneration:
    def test_thin_start_has_single_move(self):
        pos = start_position(Variant.THIN)
        assert legal_moves(pos, RuleSet()) == [Move(7, 5)]

    def test_king_steps(self):
        pos = decode("bk,x,x,x,x,wk,x,x,x,x,x,x:w")
        assert set(legal_moves(pos, RuleSet())) == {Move(5, 4), Move(5, 6)}

    def test_thin_knight_jumps_two(self):
        pos = decode("bk,x,x,x,x,wn,x,x,x,x,x,wk:w")
        assert targets(pos, square=5) == {3, 7}
        assert is_attacked(pos.cells, pos.geometry, 3, chess.WHITE)
        assert not is_attacked(pos.cells, pos.geometry, 4, chess.WHITE)

    def test_rook_blocked_by_own_piece(self):
        pos = decode("bk,x,x,wn,x,wr,x,x,x,x,x,wk:w")
        assert targets(pos, square=5) == {4, 6, 7, 8, 9, 10}

    def test_rook_captures_enemy(self):
        pos = decode("bk,x,x,bn,x,wr,x,x,x,x,x,wk:w")
        assert targets(pos, square=5) == {3, 4, 6, 7, 8, 9, 10}

    def test_pinned_knight_cannot_move(self):
        pos = decode("bk,x,x,br,wn,wk,x,x,x,x,x,x:w")
        assert targets(pos, square=4) == set()

    def test_skinny_knight(self):
        pos = decode("bk,x/x,x/x,x/x,x/wn,x/x,x/x,x/x,x/x,x/x,wk:w", SKINNY)
        assert targets(pos, square=8) == {5, 13}

    def test_skinny_bishop(self):
        pos = decode("bk,x/x,x/x,x/x,x/wb,x/x,x/x,x/x,x/x,x/x,wk:w", SKINNY)
        assert targets(pos, square=8) == {7, 11}

    def test_pawn_double_step(self):
        pos = decode("x,bk/x,x/x,x/x,x/x,x/x,x/x,x/x,x/wp,x/x,wk:w", SKINNY)
        assert targets(pos, square=16) == {14, 12}
        assert targets(pos, RuleSet(pawn_double_step=False), square=16) == {14}

    def test_promotion_choices(self):
        pos = decode("x,x/wp,x/x,x/x,x/x,x/x,bk/x,x/x,x/x,x/wk,x:w", SKINNY)
        pawn_moves = {m for m in legal_moves(pos, RuleSet()) if m.from_square == 2}
        assert pawn_moves == {Move(2, 0, chess.ROOK), Move(2, 0, chess.BISHOP), Move(2, 0, chess.KNIGHT)}
        promoted = apply_move(pos, Move(2, 0, chess.KNIGHT))
        assert promoted.cells[0] == chess.Piece(chess.KNIGHT, chess.WHITE)

    def test_promotion_disabled(self):
        pos = decode("x,x/wp,x/x,x/x,x/x,x/x,bk/x,x/x,x/x,x/wk,x:w", SKINNY)
        pawn_moves = {m for m in legal_moves(pos, RuleSet(promotion=False)) if m.from_square == 2}
        assert pawn_moves == {Move(2, 0)}

    def test_en_passant(self):
        rules = RuleSet(en_passant=True)
        pos = decode("bk,x/x,bp/x,x/wp,x/x,x/x,x/x,x/x,x/x,x/x,wk:b", SKINNY)
        pos = apply_move(pos, Move(3, 7))
        assert pos.ep_square == 5
        assert Move(6, 5) in legal_moves(pos, rules)
        after = apply_move(pos, Move(6, 5))
        assert after.cells[7] is None
        assert after.cells[6] is None
        assert after.cells[5] == chess.Piece(chess.PAWN, chess.WHITE)
        assert after.ep_square is None

    def test_en_passant_disabled(self):
        pos = decode("bk,x/x,bp/x,x/wp,x/x,x/x,x/x,x/x,x/x,x/x,wk:b", SKINNY)
        pos = apply_move(pos, Move(3, 7))
        assert Move(6, 5) not in legal_moves(pos, RuleSet())

    def test_castling(self):
        rules = RuleSet(castling=True)
        pos = decode("bk,bn,x,x,x,x,x,wr,x,x,x,wk:w")
        assert Move(11, 9) in legal_moves(pos, rules)
        after = apply_move(pos, Move(11, 9))
        assert after.cells[9] == chess.Piece(chess.KING, chess.WHITE)
        assert after.cells[10] == chess.Piece(chess.ROOK, chess.WHITE)
        assert after.cells[7] is None
        assert after.castling == frozenset()

    def test_castling_cannot_unmask_a_rook(self):
        # the castling rook shields the king square from the white rook
        rules = RuleSet(castling=True)
        pos = decode("bk,x,x,br,x,x,x,x,wr,x,x,wk:b")
        assert 3 in pos.castling
        assert Move(0, 2) not in legal_moves(pos, rules)

    def test_castling_cannot_unmask_a_rook_skinny(self):
        rules = RuleSet(castling=True)
        pos = decode("x,bk/x,x/x,x/x,br/x,x/x,x/x,wr/x,x/x,x/wk,x:b", SKINNY)
        assert Move(1, 5) not in legal_moves(pos, rules)

    def test_random_playouts_keep_kings_safe(self):
        rules = RuleSet(castling=True, en_passant=True)
        rng = random.Random(11)
        for variant in (Variant.THIN, SKINNY):
            for _ in range(15):
                pos = start_position(variant)
                for _ in range(60):
                    moves = legal_moves(pos, rules)
                    if not moves:
                        break
                    for move in moves:
                        after = apply_move(pos, move)
                        king = find_king(after.cells, pos.turn)
                        assert not is_attacked(after.cells, after.geometry, king, after.turn), move.uci(pos.geometry)
                        assert decode(encode(after), variant) == after
                    pos = apply_move(pos, rng.choice(moves))

    def test_castling_disabled(self):
        pos = decode("bk,bn,x,x,x,x,x,wr,x,x,x,wk:w")
        assert Move(11, 9) not in legal_moves(pos, RuleSet())

    def test_rook_move_drops_its_right(self):
        pos = decode("bk,bn,x,x,x,x,x,wr,x,x,x,wk:w")
        assert 7 in pos.castling
        assert 7 not in apply_move(pos, Move(7, 6)).castling

    def test_clock_resets_on_capture(self):
        pos = decode("bk,x,x,bn,x,wr,x,x,x,x,x,wk:w:-:-:12")
        assert apply_move(pos, Move(5, 4)).halfmove_clock == 13
        assert apply_move(pos, Move(5, 3)).halfmove_clock == 0

    def test_apply_move_leaves_input_untouched(self):
        pos = start_position(Variant.THIN)
        before = encode(pos)
        apply_move(pos, Move(7, 5))
        assert encode(pos) == before

    def test_apply_move_from_empty_square(self):
        with pytest.raises(InvariantViolation):
            apply_move(start_position(Variant.THIN), Move(5, 6))


# ════════════════════════════════════════════════════════════════════════════
#  TERMINAL CLASSIFICATION
# ════════════════════════════════════════════════════════════════════════════

class TestTerminal:
    def test_not_terminal_at_start(self):
        assert terminal(start_position(Variant.THIN)) is None

    def test_checkmate(self):
        term = terminal(decode("bk,x,x,x,x,x,x,x,x,br,x,wk:w"))
        assert term == Terminal.WHITE_MATE
        assert term.winner == chess.BLACK
        assert term.verdict_for(chess.WHITE) is Verdict.LOSS

    def test_stalemate(self):
        pos = decode("x,x,x,x,x,x,x,x,x,bk,x,wk:w")
        assert terminal(pos) == Terminal.STALEMATE
        assert terminal(pos, RuleSet(material_count_win=True)) == Terminal.DRAW_MATERIAL_TIE

    def test_material_count_win(self):
        pos = decode("bk,wn,wr,x,x,x,x,x,x,x,x,wk:b")
        assert terminal(pos) == Terminal.STALEMATE
        assert terminal(pos, RuleSet(material_count_win=True)) == Terminal.WHITE_MATERIAL_WIN

    def test_race_to_back_rank(self):
        pos = decode("wr,x,x,bk,x,x,x,x,x,x,x,wk:b")
        assert terminal(pos, RuleSet(race_to_back_rank=True)) == Terminal.WHITE_RACE_WIN
        assert terminal(pos) == Terminal.BLACK_MATE

    def test_race_both_arrived_mover_wins(self):
        pos = decode("wr,x,bn,bk,x,x,wk,wn,x,x,x,br:w")
        assert terminal(pos, RuleSet(race_to_back_rank=True)) == Terminal.BLACK_RACE_WIN

    def test_fifty_move_rule(self):
        pos = decode("x,x,x,x,x,wk,x,x,x,x,x,bk:w:-:-:100")
        assert terminal(pos) == Terminal.DRAW_FIFTY
        assert terminal(pos, RuleSet(fifty_move=False)) is None

    def test_stalemate_beats_fifty_move(self):
        pos = decode("x,x,x,x,x,x,x,x,x,bk,x,wk:w:-:-:100")
        assert terminal(pos) == Terminal.STALEMATE

    def test_threefold(self):
        code = "x,bk/x,x/x,x/x,x/x,x/x,x/x,x/x,x/x,x/wk,x:w"
        for rules, expected in ((RuleSet(), Terminal.DRAW_THREEFOLD), (RuleSet(threefold=False), None)):
            b = ChessBoard(code, SKINNY, rules=rules)
            for _ in range(2):
                for move in ("a1a2", "b10b9", "a2a1", "b9b10"):
                    assert b.make_move(move)
            assert b.terminal() == expected

    def test_terminal_rejects_invalid_position(self):
        pos = decode("bk,x,x,x,x,wk")
        broken = type(pos)(pos.variant, (None,) * 6, pos.turn)
        with pytest.raises(PositionError):
            terminal(broken)

    def test_describe(self):
        assert Terminal.BLACK_MATE.describe() == "White Wins - Black is checkmated"
        assert Terminal.DRAW_THREEFOLD.describe() == "Draw - Threefold repetition"


# ════════════════════════════════════════════════════════════════════════════
#  RULE SETS
# ════════════════════════════════════════════════════════════════════════════

class TestRuleSet:
    def test_defaults(self):
        rules = RuleSet()
        assert rules.fifty_move and rules.threefold and rules.promotion
        assert not rules.castling and not rules.en_passant

    def test_from_dict_aliases(self):
        rules = RuleSet.from_dict({"enPassant": True, "raceToBackRank": True, "aiStrategy": "aggressive"})
        assert rules.en_passant
        assert rules.race_to_back_rank
        assert rules.ai_strategy is AIStrategy.AGGRESSIVE

    def test_unknown_rule(self):
        with pytest.raises(RuleSetError) as exc:
            RuleSet.from_dict({"flyingKings": True})
        assert exc.value.field == "flyingKings"

    def test_non_boolean_rule(self):
        with pytest.raises(RuleSetError):
            RuleSet(castling="yes")

    def test_unknown_strategy(self):
        with pytest.raises(RuleSetError):
            RuleSet(ai_strategy="reckless")

    def test_en_passant_needs_double_step(self):
        with pytest.raises(RuleSetError):
            RuleSet(en_passant=True, pawn_double_step=False)

    def test_to_dict(self):
        data = RuleSet(ai_strategy=AIStrategy.COOPERATIVE).to_dict()
        assert data["ai_strategy"] == "cooperative"
        assert RuleSet.from_dict(data) == RuleSet(ai_strategy=AIStrategy.COOPERATIVE)


# ════════════════════════════════════════════════════════════════════════════
#  EVALUATOR
# ════════════════════════════════════════════════════════════════════════════

class TestEvaluator:
    def test_kings_only_is_zero(self):
        assert Evaluator().evaluate(decode("bk,x,x,x,x,x,x,x,x,x,x,wk:w")) == 0

    def test_symmetric_start_is_balanced(self):
        assert Evaluator().evaluate(start_position(Variant.THIN)) == 0

    def test_side_to_move_perspective(self):
        e = Evaluator()
        white = e.evaluate(decode("bk,x,x,x,x,x,x,x,x,x,wk,wr:w"))
        black = e.evaluate(decode("bk,x,x,x,x,x,x,x,x,x,wk,wr:b"))
        assert white == -black
        assert white > 0

    def test_mop_up_prefers_cornered_king(self):
        e = Evaluator()
        cornered = e.evaluate(decode("bk,x,x,x,x,x,x,x,x,x,wk,wr:w"))
        central = e.evaluate(decode("x,x,x,x,x,bk,x,x,x,x,wk,wr:w"))
        assert cornered - central == 30

    def test_pst_on_small_board(self):
        cfg = EvalConfig()
        e = Evaluator(cfg)
        advanced = e.evaluate(decode("bk,x/wp,x/x,x/x,x/x,x/x,wk:w", SKINNY))
        home = e.evaluate(decode("bk,x/x,x/x,x/x,x/wp,x/x,wk:w", SKINNY))
        assert advanced - home == cfg.PST_PAWN[6] - cfg.PST_PAWN[24]
        assert advanced > home

    def test_no_pst_on_long_board(self):
        e = Evaluator()
        a = e.evaluate(decode("bk,x,x,x,x,x,x,x,x,wn,x,wk:w"))
        b = e.evaluate(decode("bk,x,x,x,x,x,x,x,wn,x,x,wk:w"))
        assert a == b

    def test_endgame_threshold(self):
        e = Evaluator()
        assert e.is_endgame(decode("bk,x,x,x,x,x,x,x,x,x,wk,wr:w"))
        assert not e.is_endgame(start_position(Variant.THIN))

    def test_geometry_helpers(self):
        g = geometry_for(Variant.THIN)
        assert distance_from_edge(g, 0) == 0
        assert distance_from_edge(g, 5) == 5
        assert king_distance(g, 1, 7) == 6
        s = geometry_for(SKINNY)
        assert king_distance(s, 0, 3) == 1

    def test_complexity(self):
        assert estimate_complexity(start_position(Variant.THIN)) == pytest.approx(10.0)
        assert estimate_complexity(decode("wk,wn,wr,x,x,bn,br,bk")) == pytest.approx(6 * (8 / 12) ** 0.5)


# ════════════════════════════════════════════════════════════════════════════
#  TRANSPOSITION TABLE
# ════════════════════════════════════════════════════════════════════════════

class TestTranspositionTable:
    def test_store_and_get(self):
        tt = TranspositionTable(max_entries=10)
        assert tt.store("k", 3, 120, TT_EXACT, Move(1, 2))
        entry = tt.get("k")
        assert entry.depth == 3
        assert entry.value == 120
        assert entry.best_move == Move(1, 2)
        key, depth, value, flag, move = entry
        assert flag == TT_EXACT

    def test_miss(self):
        tt = TranspositionTable()
        assert tt.get("nothing") is None
        assert tt.stats()["probes"] == 1
        assert tt.stats()["hits"] == 0

    def test_deeper_entry_kept(self):
        tt = TranspositionTable()
        tt.store("k", 5, 10, TT_BETA, None)
        assert not tt.store("k", 2, 99, TT_ALPHA, None)
        assert tt.get("k").value == 10
        assert tt.store("k", 6, 7, TT_EXACT, None)
        assert tt.get("k").value == 7

    def test_capacity_refuses_new_keys(self):
        tt = TranspositionTable(max_entries=2)
        tt.store("a", 1, 0, TT_EXACT, None)
        tt.store("b", 1, 0, TT_EXACT, None)
        assert tt.full
        assert not tt.store("c", 1, 0, TT_EXACT, None)
        assert "c" not in tt
        assert len(tt) == 2
        assert tt.stats()["rejected"] == 1
        # existing keys can still be refreshed
        assert tt.store("a", 2, 5, TT_EXACT, None)

    def test_proven_entry_survives_bounds(self):
        tt = TranspositionTable()
        tt.store("k", 0, MATE_SCORE - 3, TT_EXACT, Move(0, 1), Verdict.WIN, proven=True)
        assert not tt.store("k", 20, 15, TT_BETA, None)
        entry = tt.get("k")
        assert entry.proven
        assert entry.verdict is Verdict.WIN

    def test_clear(self):
        tt = TranspositionTable()
        tt.store("k", 1, 0, TT_EXACT, None)
        tt.get("k")
        tt.clear()
        assert len(tt) == 0
        assert tt.stats()["hits"] == 0


# ════════════════════════════════════════════════════════════════════════════
#  STRATEGY SELECTION
# ════════════════════════════════════════════════════════════════════════════

class TestStrategy:
    win = Candidate(Move(0, 1), MATE_SCORE - 5, Verdict.WIN, True)
    draw = Candidate(Move(0, 2), 0, Verdict.DRAW, True)
    loss = Candidate(Move(0, 3), -(MATE_SCORE - 9), Verdict.LOSS, True)
    edge = Candidate(Move(0, 4), 20)
    lead = Candidate(Move(0, 5), 180)

    def test_perfect_prefers_win(self):
        assert select_candidate([self.draw, self.loss, self.win]) == self.win

    def test_perfect_prefers_draw_over_loss(self):
        assert select_candidate([self.loss, self.draw]) == self.draw

    def test_perfect_prefers_faster_win(self):
        slow = Candidate(Move(1, 2), MATE_SCORE - 11, Verdict.WIN, True)
        assert select_candidate([slow, self.win]) == self.win

    def test_perfect_prefers_longer_defence(self):
        quick = Candidate(Move(1, 2), -(MATE_SCORE - 2), Verdict.LOSS, True)
        assert select_candidate([quick, self.loss]) == self.loss

    def test_aggressive_avoids_draws(self):
        picked = select_candidate([self.draw, self.loss], AIStrategy.AGGRESSIVE)
        assert picked == self.loss
        assert select_candidate([self.draw, self.loss, self.win], AIStrategy.AGGRESSIVE) == self.win

    def test_aggressive_takes_unproven_edge_over_draw(self):
        assert select_candidate([self.draw, self.edge], AIStrategy.AGGRESSIVE) == self.edge

    def test_cooperative_with_clear_lead(self):
        rng = random.Random(1)
        for _ in range(10):
            assert select_candidate([self.draw, self.lead, self.loss], AIStrategy.COOPERATIVE, rng) == self.lead

    def test_cooperative_without_lead_avoids_winning(self):
        rng = random.Random(3)
        picks = {select_candidate([self.edge, self.draw, self.loss], AIStrategy.COOPERATIVE, rng).move
                 for _ in range(40)}
        assert picks == {self.draw.move, self.loss.move}

    def test_cooperative_falls_back_to_any(self):
        rng = random.Random(0)
        assert select_candidate([self.edge], AIStrategy.COOPERATIVE, rng) == self.edge

    def test_empty(self):
        with pytest.raises(ValueError):
            select_candidate([])

    def test_outcome_from_score(self):
        assert self.edge.outcome is Verdict.WIN
        assert Candidate(Move(0, 1), -40).outcome is Verdict.LOSS
        assert Candidate(Move(0, 1), 0).outcome is Verdict.DRAW


# ════════════════════════════════════════════════════════════════════════════
#  SEARCH
# ════════════════════════════════════════════════════════════════════════════

class TestSearch:
    def engine(self, **overrides):
        return SearchEngine(config=SearchConfig(**{**FAST, **overrides}), rng=random.Random(0))

    def test_terminal_root(self):
        result = self.engine().choose_move(decode("bk,x,x,x,x,x,x,x,x,br,x,wk:w"))
        assert result.move is None
        assert result.tier == 0
        assert result.verdict is Verdict.LOSS
        assert result.proven
        assert result.terminal == Terminal.WHITE_MATE
        assert result.depth == 0

    def test_stalemate_root(self):
        result = self.engine().choose_move(decode("x,x,x,x,x,x,x,x,x,bk,x,wk:w"))
        assert result.move is None
        assert result.verdict is Verdict.DRAW

    def test_invalid_position(self):
        pos = decode("bk,x,x,x,x,wk")
        broken = type(pos)(pos.variant, (None,) * 6, pos.turn)
        with pytest.raises(PositionError):
            self.engine().choose_move(broken)

    def test_capturable_king_rejected_before_search(self):
        pos = decode("x,x,x,x,wk,x,x,bk,wr,x,x,x:b")
        wrong_side = type(pos)(pos.variant, pos.cells, chess.WHITE)
        with pytest.raises(PositionError) as exc:
            self.engine().choose_move(wrong_side)
        assert exc.value.field == "turn"
        with pytest.raises(PositionError):
            legal_moves(wrong_side, RuleSet())
        with pytest.raises(PositionError):
            terminal(wrong_side)

    def test_cached_result_not_trusted_past_fifty_moves(self):
        def primed(code):
            e = self.engine()
            pos = decode(code)
            # pretend a clock-free solve proved every reply lost in 70 plies
            for move in legal_moves(pos, RuleSet()):
                child = apply_move(pos, move)
                e.exact_tt.store(position_key(child), 70, -(MATE_SCORE - 70), TT_EXACT, None, Verdict.LOSS, proven=True)
            return e, pos

        e, pos = primed("x,x,x,x,x,bk,x,x,wk,x,x,x:w")
        result = e.choose_move(pos)
        assert result.verdict is Verdict.WIN
        assert result.plies_to_end == 71

        e, pos = primed("x,x,x,x,x,bk,x,x,wk,x,x,x:w:-:-:40")
        result = e.choose_move(pos)
        assert result.verdict is not Verdict.WIN
        assert result.move in legal_moves(pos, RuleSet())

    def test_tier_selection(self):
        e = self.engine()
        small = decode("x,x,x,x,x,bk,x,x,wk,x,x,x:w")
        assert e.select_tier(small, legal_moves(small, RuleSet())) == 1
        start = start_position(Variant.THIN)
        assert e.select_tier(start, legal_moves(start, RuleSet())) == 2
        crowded = decode("bk,bn/br,bb/bp,x/x,x/x,x/x,x/x,x/wp,x/wb,wr/wn,wk:w", SKINNY)
        assert e.select_tier(crowded, legal_moves(crowded, RuleSet())) == 3

    def test_tier3_depth_by_piece_count(self):
        e = self.engine()
        assert e.tier3_depth(6) == 6
        assert e.tier3_depth(10) == 5
        assert e.tier3_depth(16) == 4

    def test_mate_in_one_proven_by_tier1(self):
        pos = decode("bk,x,x,x,wn,wr,x,wk,x,x,x,x:w")
        result = self.engine().choose_move(pos)
        assert result.tier == 1
        assert result.move == Move(4, 6)
        assert result.verdict is Verdict.WIN
        assert result.proven
        assert result.score == MATE_SCORE - 1
        assert result.plies_to_end == 1

    def test_mate_in_one_found_by_tier2(self):
        pos = decode("bk,x,x,x,wn,wr,x,wk,x,x,x,x:w")
        result = self.engine(tier1_max_complexity=0).choose_move(pos)
        assert result.tier == 2
        assert result.move == Move(4, 6)
        assert result.verdict is Verdict.WIN
        assert result.score == MATE_SCORE - 1
        assert result.depth == 1

    def test_kings_only_draw_is_proven(self):
        pos = decode("x,x,x,x,x,bk,x,x,wk,x,x,x:w")
        result = self.engine().choose_move(pos)
        assert result.tier == 1
        assert result.verdict is Verdict.DRAW
        assert result.proven
        assert result.move in legal_moves(pos, RuleSet())

    def test_rook_behind_own_king_cannot_win(self):
        pos = decode("bk,x,x,x,x,wk,x,x,x,x,x,wr:w")
        result = self.engine().choose_move(pos)
        assert result.tier == 1
        assert result.verdict is Verdict.DRAW
        assert all(c.verdict is Verdict.DRAW for c in result.candidates)

    def test_tier1_results_are_cached(self):
        e = self.engine()
        pos = decode("bk,x,x,x,x,wk,x,x,x,x,x,wr:w")
        e.choose_move(pos)
        first_size = len(e.exact_tt)
        assert first_size > 0
        again = e.choose_move(pos)
        assert again.verdict is Verdict.DRAW
        assert again.nodes < first_size

    def test_tier1_budget_falls_back_to_tier2(self):
        pos = decode("bk,x,x,x,x,wk,x,x,x,x,x,wr:w")
        result = self.engine(tier1_max_nodes=3).choose_move(pos)
        assert result.tier == 2
        assert result.move in legal_moves(pos, RuleSet())

    def test_tier2_respects_node_budget(self):
        e = self.engine(tier2_max_nodes=300, tier2_max_time_ms=1000)
        pos = start_position(Variant.THIN)
        result = e.choose_move(pos)
        assert result.tier == 2
        assert result.move == Move(7, 5)
        assert e.iteration_nodes
        assert all(n <= 300 for n in e.iteration_nodes)

    def test_tier2_deadline_stops_after_first_iteration(self):
        pos = start_position(Variant.THIN)
        result = self.engine(tier2_max_time_ms=0).choose_move(pos)
        assert result.depth == 1
        assert result.move in legal_moves(pos, RuleSet())

    def test_tier2_without_completed_iteration(self):
        pos = decode("bk,x,x,x,x,wk,x,x,x,x,x,wr:w")
        result = self.engine(tier1_max_complexity=0, tier2_max_nodes=1).choose_move(pos)
        assert result.depth == 0
        assert not result.proven
        assert result.move in legal_moves(pos, RuleSet())

    def test_tier3_fixed_depth(self):
        pos = decode("bk,bn/br,bb/bp,x/x,x/x,x/x,x/x,x/wp,x/wb,wr/wn,wk:w", SKINNY)
        e = self.engine(tier3_depth_small=2, tier3_depth_medium=2, tier3_depth_large=2)
        result = e.choose_move(pos)
        assert result.tier == 3
        assert result.depth == 2
        assert result.move in legal_moves(pos, RuleSet())

    def test_exhaustive_root_for_other_strategies(self):
        pos = decode("bk,x,x,x,x,wk,x,x,x,x,x,wr:w")
        result = self.engine(tier1_max_complexity=0, tier2_max_depth=2).choose_move(pos, strategy=AIStrategy.COOPERATIVE)
        assert result.strategy is AIStrategy.COOPERATIVE
        assert all(c.exact for c in result.candidates)
        assert len(result.candidates) == len(legal_moves(pos, RuleSet()))

    def test_strategy_from_rules(self):
        pos = decode("x,x,x,x,x,bk,x,x,wk,x,x,x:w")
        result = self.engine().choose_move(pos, RuleSet(ai_strategy=AIStrategy.AGGRESSIVE))
        assert result.strategy is AIStrategy.AGGRESSIVE

    def test_clear_forgets_caches(self):
        e = self.engine()
        e.choose_move(decode("bk,x,x,x,x,wk,x,x,x,x,x,wr:w"))
        e.clear()
        assert len(e.exact_tt) == 0
        assert len(e.tt) == 0

    def test_one_shot_choose_move(self):
        pos = decode("bk,x,x,x,wn,wr,x,wk,x,x,x,x:w")
        result = choose_move(pos, config=SearchConfig(**FAST))
        assert result.move == Move(4, 6)

    def test_repeated_solve_is_consistent(self):
        pos = decode("bk,br,bn,x,x,x,x,x,wn,wr,wk,x:w")
        e = self.engine()
        first = e.choose_move(pos)
        second = e.choose_move(pos)
        assert first.tier == second.tier
        assert first.move in legal_moves(pos, RuleSet())
        assert second.move in legal_moves(pos, RuleSet())


class TestInfoLine:
    def test_centipawns(self):
        g = geometry_for(Variant.THIN)
        line = format_info(2, 3, 45, 1000, 0.5, [Move(7, 5)], g)
        assert "score cp 45" in line
        assert "nps 2000" in line
        assert line.endswith("pv a5a7")

    def test_mate(self):
        g = geometry_for(Variant.THIN)
        assert "score mate 1" in format_info(1, 1, MATE_SCORE - 1, 10, 0, [], g)
        assert "score mate -2" in format_info(1, 3, -(MATE_SCORE - 3), 10, 0, [], g)
        assert MATE_SCORE - 3 >= MATE_THRESHOLD

"""FastAPI REST interface for the engine."""

import logging
import threading
from typing import Any, Dict, Optional

import chess
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from thinchess.config import CONFIG
from thinchess.core.board import IllegalMoveError
from thinchess.core.position import Move, PositionError
from thinchess.core.rules import AIStrategy, RuleSet, RuleSetError
from thinchess.main import Engine

logging.basicConfig(level=CONFIG.log_level)

app = FastAPI(title=CONFIG.ui.engine_name, version="1.0.0")

# Shared session (preserves the solver caches across requests).
session = Engine(variant=CONFIG.ui.default_variant)
_board_lock = threading.Lock()


class PositionRequest(BaseModel):
    code: str
    variant: Optional[str] = None
    length: Optional[int] = None


class MoveRequest(BaseModel):
    move: str  # e.g. "a1a2", "b9b10r"


class RulesRequest(BaseModel):
    rules: Dict[str, Any]


class SearchRequest(BaseModel):
    strategy: Optional[str] = None
    play: bool = False


def _board_state() -> dict:
    board = session.board
    term = board.terminal()
    return {
        "code": board.get_code(),
        "variant": board.variant.value,
        "length": board.geometry.height,
        "turn": "white" if board.position.turn == chess.WHITE else "black",
        "legal_moves": board.get_legal_moves(),
        "is_game_over": term is not None,
        "terminal": term.value if term else None,
        "result": term.describe() if term else None,
        "rules": board.rules.to_dict(),
        "moves_played": len(board.move_history),
    }


@app.get("/board")
def get_board():
    with _board_lock:
        return _board_state()


@app.post("/position")
def set_position(req: PositionRequest):
    with _board_lock:
        try:
            session.load_position(req.code, req.variant, req.length)
        except (PositionError, ValueError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid position: {e}")
        return _board_state()


@app.post("/rules")
def set_rules(req: RulesRequest):
    with _board_lock:
        try:
            rules = RuleSet.from_dict(req.rules)
        except RuleSetError as e:
            raise HTTPException(status_code=400, detail=f"Invalid rules: {e}")
        session.set_rules(rules)
        return {"rules": rules.to_dict()}


@app.post("/move")
def make_move(req: MoveRequest):
    with _board_lock:
        try:
            move = Move.from_uci(req.move, session.board.geometry)
        except PositionError:
            raise HTTPException(status_code=400, detail=f"Invalid move format: {req.move}")
        try:
            session.board.push(move)
        except IllegalMoveError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"code": session.board.get_code(), "move": req.move}


@app.post("/undo")
def undo_move():
    with _board_lock:
        session.undo_move()
        return {"code": session.board.get_code(), "moves_played": len(session.board.move_history)}


@app.post("/search")
def search_move(req: SearchRequest = SearchRequest()):
    with _board_lock:
        if session.board.is_game_over():
            raise HTTPException(status_code=400, detail="Game is already over")
        try:
            strategy = AIStrategy(req.strategy) if req.strategy else session.strategy
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown strategy: {req.strategy}")
        board = session.board
        result = session.search.choose_move(board.position, board.rules, strategy, board.history)
        geometry = board.geometry
        if req.play and result.move is not None:
            board.push(result.move)

        return {
            "best_move": result.move.uci(geometry) if result.move else None,
            "tier": result.tier,
            "verdict": result.verdict.value,
            "proven": result.proven,
            "score": result.score,
            "depth": result.depth,
            "nodes": result.nodes,
            "time_ms": result.elapsed_ms,
            "pv": [m.uci(geometry) for m in result.pv],
            "label": result.label,
            "code": board.get_code(),
        }


@app.post("/reset")
def reset_board():
    with _board_lock:
        session.new_game()
        return {"code": session.board.get_code()}

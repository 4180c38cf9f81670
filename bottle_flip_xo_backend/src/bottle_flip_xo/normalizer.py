"""
Rebuilds a well-formed GameState from whatever the document store hands back.

The store drops empty values (empty strings, empty lists, None) and may turn a
sparse list into a mapping keyed by index ("0".."8"), so nothing read from it
is trusted to have the shape it was written with. Every read goes through
normalize_game_state() before anyone else sees it. This module never raises.
"""

import math
from typing import Any, List, Optional
from .models import (
    BOARD_SIZE,
    DEFAULT_PLAYER_O,
    DEFAULT_PLAYER_X,
    INITIAL_LAST_PLAYER,
    CellValue,
    GameState,
    GameStatus,
    Mark,
    MoveAction,
    MoveRecord,
    now_ms,
)


def _as_mark(value: Any) -> Optional[Mark]:
    if value == "X" or value == "O":
        return Mark(getattr(value, "value", value))
    return None


def _as_cell(value: Any) -> CellValue:
    mark = _as_mark(value)
    return CellValue(mark.value) if mark else CellValue.EMPTY


def _decimal_int(value: str) -> Optional[int]:
    # isdigit() also accepts superscripts, which int() rejects.
    if not value.isdecimal():
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _as_cell_index(value: Any) -> int:
    # bool is an int subclass; True must not read as cell 1.
    if isinstance(value, bool):
        return 0
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        value = int(value)
    if isinstance(value, str):
        value = _decimal_int(value)
    if isinstance(value, int) and 0 <= value < BOARD_SIZE:
        return value
    return 0


def _keyed_get(mapping: dict, index: int) -> Any:
    if str(index) in mapping:
        return mapping[str(index)]
    return mapping.get(index)


def _numeric_keys(mapping: dict) -> List[int]:
    keys = []
    for key in mapping:
        if isinstance(key, bool):
            continue
        if isinstance(key, int):
            keys.append(key)
        elif isinstance(key, str):
            index = _decimal_int(key)
            if index is not None:
                keys.append(index)
    return sorted(set(keys))


# PUBLIC_INTERFACE
def normalize_board(raw: Any) -> List[CellValue]:
    """Exactly 9 cells; anything that is not 'X' or 'O' becomes empty."""
    if isinstance(raw, (list, tuple)):
        board = [_as_cell(value) for value in raw[:BOARD_SIZE]]
        board.extend([CellValue.EMPTY] * (BOARD_SIZE - len(board)))
        return board
    if isinstance(raw, dict):
        return [_as_cell(_keyed_get(raw, i)) for i in range(BOARD_SIZE)]
    return [CellValue.EMPTY] * BOARD_SIZE


def _normalize_move(raw: Any) -> MoveRecord:
    if not isinstance(raw, dict):
        raw = {}
    action = raw.get("action")
    return MoveRecord(
        player=_as_mark(raw.get("player")) or Mark.X,
        cell_index=_as_cell_index(raw.get("cellIndex")),
        action=MoveAction(action) if action in ("place", "replace") else MoveAction.PLACE,
        previous_value=_as_cell(raw.get("previousValue")),
    )


# PUBLIC_INTERFACE
def normalize_move_history(raw: Any) -> List[MoveRecord]:
    """Ordered move list from a list, an index-keyed mapping, or nothing."""
    if isinstance(raw, (list, tuple)):
        return [_normalize_move(move) for move in raw if move is not None]
    if isinstance(raw, dict):
        entries = (_keyed_get(raw, key) for key in _numeric_keys(raw))
        return [_normalize_move(move) for move in entries if move is not None]
    return []


def _as_timestamp(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return now_ms()
    if (isinstance(value, float) and not math.isfinite(value)) or value <= 0:
        return now_ms()
    return int(value)


def _as_name(value: Any, default: str) -> str:
    if isinstance(value, str) and value:
        return value
    return default


# PUBLIC_INTERFACE
def normalize_game_state(data: Any) -> GameState:
    """
    Convert a raw store document (or an existing GameState) into a GameState.

    Missing or falsy scalars fall back to their initial values. A document that
    names a winner is always reported as finished.
    """
    if isinstance(data, GameState):
        data = data.to_document()
    if not isinstance(data, dict):
        data = {}

    winner = _as_mark(data.get("winner"))
    status = GameStatus.FINISHED if data.get("gameStatus") == "finished" or winner else GameStatus.ACTIVE

    return GameState(
        board=normalize_board(data.get("board")),
        last_player=_as_mark(data.get("lastPlayer")) or _as_mark(data.get("currentPlayer")) or INITIAL_LAST_PLAYER,
        game_status=status,
        winner=CellValue(winner.value) if winner else CellValue.EMPTY,
        player_x=_as_name(data.get("playerX"), DEFAULT_PLAYER_X),
        player_o=_as_name(data.get("playerO"), DEFAULT_PLAYER_O),
        last_move_time=_as_timestamp(data.get("lastMoveTime")),
        move_history=normalize_move_history(data.get("moveHistory")),
    )

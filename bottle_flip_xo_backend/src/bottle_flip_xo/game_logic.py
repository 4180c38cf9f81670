"""
Game logic for Bottle Flip XO (win detection, move application, undo, replay).

Everything here is pure: functions take already-normalized data and return new
values without touching the store.
"""

from typing import List, Optional, Sequence
from .models import (
    BOARD_SIZE,
    INITIAL_LAST_PLAYER,
    CellValue,
    GameState,
    GameStatus,
    Mark,
    MoveAction,
    MoveRecord,
    empty_board,
)


# Rows, columns, then diagonals; scan order decides which line is reported first.
WIN_LINES = [
    (0, 1, 2), (3, 4, 5), (6, 7, 8),
    (0, 3, 6), (1, 4, 7), (2, 5, 8),
    (0, 4, 8), (2, 4, 6),
]


# PUBLIC_INTERFACE
def check_winner(board: Sequence[CellValue]) -> Optional[Mark]:
    """Mark owning the first complete line, or None."""
    for a, b, c in WIN_LINES:
        if board[a] != CellValue.EMPTY and board[a] == board[b] == board[c]:
            return Mark(getattr(board[a], "value", board[a]))
    return None


# PUBLIC_INTERFACE
def is_board_full(board: Sequence[CellValue]) -> bool:
    return all(cell != CellValue.EMPTY for cell in board)


# PUBLIC_INTERFACE
def count_marks(board: Sequence[CellValue], mark: Mark) -> int:
    return sum(1 for cell in board if cell == mark)


# PUBLIC_INTERFACE
def get_game_result(board: Sequence[CellValue]) -> str:
    """
    Classic classification: 'win', 'draw' (full, no line) or 'active'.
    A 'draw' here never ends a game, since marks can always be replaced.
    """
    if check_winner(board):
        return "win"
    if is_board_full(board):
        return "draw"
    return "active"


# PUBLIC_INTERFACE
def replay_moves(history: Sequence[MoveRecord]) -> List[CellValue]:
    """Rebuild a board by applying every recorded move to an empty board."""
    board = empty_board()
    for move in history:
        board[move.cell_index] = CellValue(move.player.value)
    return board


def _status_for(board: Sequence[CellValue]):
    winner = check_winner(board)
    if winner:
        return GameStatus.FINISHED, CellValue(winner.value)
    return GameStatus.ACTIVE, CellValue.EMPTY


# PUBLIC_INTERFACE
def apply_move(
    state: GameState, cell_index: int, mark: Mark, action: MoveAction, now: int
) -> Optional[GameState]:
    """
    Attempt a move for `mark` at `cell_index`.
    Returns the next GameState, or None if the move is not allowed.

    There is no turn order: either mark may place on any empty cell or replace
    any opposing mark. A full board without a line keeps the game active.
    """
    if state.game_status == GameStatus.FINISHED:
        return None
    if isinstance(cell_index, bool) or not isinstance(cell_index, int):
        return None
    if not (0 <= cell_index < BOARD_SIZE):
        return None

    previous_value = state.board[cell_index]
    if action == MoveAction.PLACE:
        if previous_value != CellValue.EMPTY:
            return None
    elif action == MoveAction.REPLACE:
        if previous_value != mark.opponent():
            return None
    else:
        return None

    board = list(state.board)
    board[cell_index] = CellValue(mark.value)
    record = MoveRecord(
        player=mark, cell_index=cell_index, action=action, previous_value=previous_value
    )
    status, winner = _status_for(board)

    return state.model_copy(update={
        "board": board,
        "last_player": mark,
        "last_move_time": max(now, state.last_move_time),
        "move_history": [*state.move_history, record],
        "game_status": status,
        "winner": winner,
    })


# PUBLIC_INTERFACE
def undo_move(state: GameState, now: int) -> Optional[GameState]:
    """
    Pop the newest move and put back what the cell held before it.
    Status and winner are recomputed, so undoing a winning move revives the game.
    Returns None when there is nothing to undo.
    """
    if not state.move_history:
        return None

    history = list(state.move_history)
    last = history.pop()
    board = list(state.board)
    board[last.cell_index] = last.previous_value
    status, winner = _status_for(board)

    return state.model_copy(update={
        "board": board,
        "last_player": history[-1].player if history else INITIAL_LAST_PLAYER,
        "last_move_time": max(now, state.last_move_time),
        "move_history": history,
        "game_status": status,
        "winner": winner,
    })

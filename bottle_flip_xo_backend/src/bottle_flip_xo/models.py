"""
Models for the Bottle Flip XO backend (shared game record and API payloads).
"""

import time
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


GAMES_ROOT = "currentGame"
DEFAULT_GAME_ID = "tic-tac-toe-game"
CONNECTION_TEST_PATH = "connectionTest"

DEFAULT_PLAYER_X = "Player X"
DEFAULT_PLAYER_O = "Player O"

BOARD_SIZE = 9


class Mark(str, Enum):
    X = "X"
    O = "O"

    def opponent(self) -> "Mark":
        return Mark.O if self is Mark.X else Mark.X


class CellValue(str, Enum):
    X = "X"
    O = "O"
    EMPTY = ""


class MoveAction(str, Enum):
    PLACE = "place"
    REPLACE = "replace"


class GameStatus(str, Enum):
    ACTIVE = "active"
    FINISHED = "finished"


# Chosen so clients can present X as "next" without any turn enforcement.
INITIAL_LAST_PLAYER = Mark.O


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def empty_board() -> List[CellValue]:
    return [CellValue.EMPTY] * BOARD_SIZE


# PUBLIC_INTERFACE
class MoveRecord(BaseModel):
    """One reversible board mutation; previous_value restores the cell on undo."""
    model_config = ConfigDict(populate_by_name=True)

    player: Mark = Field(..., description="Mark that made the move.")
    cell_index: int = Field(..., alias="cellIndex", ge=0, le=8, description="Board index (0-8).")
    action: MoveAction = Field(..., description="'place' on an empty cell or 'replace' an opponent mark.")
    previous_value: CellValue = Field(
        CellValue.EMPTY, alias="previousValue", description="Cell content before this move."
    )


# PUBLIC_INTERFACE
class GameState(BaseModel):
    """The single shared game record stored per game identifier."""
    model_config = ConfigDict(populate_by_name=True)

    board: List[CellValue] = Field(
        default_factory=empty_board, min_length=9, max_length=9,
        description="9 cells, row = index // 3, col = index % 3; values 'X', 'O' or ''.",
    )
    last_player: Mark = Field(
        INITIAL_LAST_PLAYER, alias="lastPlayer", description="Who moved last (display only)."
    )
    game_status: GameStatus = Field(GameStatus.ACTIVE, alias="gameStatus")
    winner: CellValue = Field(CellValue.EMPTY, description="Winning mark, '' while active or on a draw.")
    player_x: str = Field(DEFAULT_PLAYER_X, alias="playerX", description="Display name of X.")
    player_o: str = Field(DEFAULT_PLAYER_O, alias="playerO", description="Display name of O.")
    last_move_time: int = Field(default_factory=now_ms, alias="lastMoveTime", description="Epoch ms of last mutation.")
    move_history: List[MoveRecord] = Field(default_factory=list, alias="moveHistory")

    @property
    def move_count(self) -> int:
        return len(self.move_history)

    @property
    def next_mark(self) -> Mark:
        """Mark shown as 'next'; purely cosmetic, either side may move."""
        return self.last_player.opponent()

    def mark_for_player(self, player_name: str) -> Mark:
        """Mark of a rejoining player, matched on the X display name."""
        return Mark.X if self.player_x == player_name else Mark.O

    def to_document(self) -> dict:
        """Store/wire representation (camelCase keys, plain JSON values)."""
        return self.model_dump(by_alias=True, mode="json")


# PUBLIC_INTERFACE
def initial_game_state(player_x: str, player_o: str, last_move_time: Optional[int] = None) -> GameState:
    """Fresh game for the given names: empty board, no history, X shown as next."""
    return GameState(
        board=empty_board(),
        last_player=INITIAL_LAST_PLAYER,
        game_status=GameStatus.ACTIVE,
        winner=CellValue.EMPTY,
        player_x=player_x,
        player_o=player_o,
        last_move_time=last_move_time if last_move_time is not None else now_ms(),
        move_history=[],
    )


# PUBLIC_INTERFACE
class CreateGameRequest(BaseModel):
    """Create (or overwrite) a game with both display names."""
    model_config = ConfigDict(populate_by_name=True)

    player_x: str = Field(..., alias="playerX", min_length=1, max_length=64)
    player_o: str = Field(..., alias="playerO", min_length=1, max_length=64)
    game_id: Optional[str] = Field(None, alias="gameId", description="Game identifier; the configured default when omitted.")


# PUBLIC_INTERFACE
class StartGameRequest(BaseModel):
    """Mark selection: join the existing game or create one with the chosen mark."""
    model_config = ConfigDict(populate_by_name=True)

    mark: Mark = Field(..., description="Mark picked by the caller.")
    player_name: str = Field(..., alias="playerName", min_length=1, max_length=64)
    opponent_name: str = Field(..., alias="opponentName", min_length=1, max_length=64)
    game_id: Optional[str] = Field(None, alias="gameId")


# PUBLIC_INTERFACE
class StartGameResponse(BaseModel):
    """Game joined or created, plus the caller's mark in it."""
    mark: Mark
    game: GameState


# PUBLIC_INTERFACE
class MoveRequest(BaseModel):
    """Place on an empty cell or replace an opponent mark."""
    model_config = ConfigDict(populate_by_name=True)

    cell_index: int = Field(..., alias="cellIndex", ge=0, le=8, description="Board index (0-8).")
    player: Mark = Field(..., description="Mark making the move.")
    action: MoveAction = Field(MoveAction.PLACE)

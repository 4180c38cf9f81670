"""
Game state service: reads, writes and subscriptions for shared game records.

Every mutation is a read-modify-write against one document with no store-side
transaction. Two clients moving at the same moment can both read the same
state, and the later write wins; the earlier move is lost without any error.
Each operation re-reads right before writing, which narrows that window but
does not close it. A version counter compared on write would be the place to
add stronger consistency.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .exceptions import StoreError
from .game_logic import apply_move, undo_move
from .models import (
    CONNECTION_TEST_PATH,
    DEFAULT_GAME_ID,
    GAMES_ROOT,
    GameState,
    Mark,
    MoveAction,
    initial_game_state,
    now_ms,
)
from .normalizer import normalize_game_state
from .store import DocumentStore, Unsubscribe

logger = logging.getLogger(__name__)

GameCallback = Callable[[Optional[GameState]], None]


def _changed_fields(before: GameState, after: GameState) -> Dict[str, Any]:
    """Store-form fields that differ between two states."""
    old, new = before.to_document(), after.to_document()
    return {key: value for key, value in new.items() if old.get(key) != value}


class GameService:
    """Game operations against an injected DocumentStore."""

    def __init__(self, store: DocumentStore, games_root: str = GAMES_ROOT, default_game_id: str = DEFAULT_GAME_ID):
        self.store = store
        self.games_root = games_root.strip("/")
        self.default_game_id = default_game_id

    def _game_id(self, game_id: Optional[str]) -> str:
        return game_id or self.default_game_id

    def _game_path(self, game_id: Optional[str]) -> str:
        return f"{self.games_root}/{self._game_id(game_id)}"

    # PUBLIC_INTERFACE
    async def create_new_game(self, player_x: str, player_o: str, game_id: Optional[str] = None) -> str:
        """Write a fresh game, replacing whatever was stored under game_id."""
        game_id = self._game_id(game_id)
        game = initial_game_state(player_x, player_o)
        await self.store.write(self._game_path(game_id), game.to_document())
        logger.info("Created game %s (X=%s, O=%s)", game_id, player_x, player_o)
        return game_id

    # PUBLIC_INTERFACE
    async def get_game_state(self, game_id: Optional[str] = None) -> Optional[GameState]:
        """Normalized game, or None if no game exists."""
        document = await self.store.read(self._game_path(game_id))
        if document is None:
            return None
        return normalize_game_state(document)

    # PUBLIC_INTERFACE
    async def start_game(
        self, mark: Mark, player_name: str, opponent_name: str, game_id: Optional[str] = None
    ) -> Tuple[Optional[GameState], Mark]:
        """
        Join the running game or create one with the caller on `mark`.
        A joining caller's mark is derived from the stored names, not `mark`.
        """
        game_id = self._game_id(game_id)
        existing = await self.get_game_state(game_id)
        if existing is not None:
            # The stored names decide; a second device may pick a mark already taken.
            return existing, existing.mark_for_player(player_name)

        if mark == Mark.X:
            await self.create_new_game(player_name, opponent_name, game_id)
        else:
            await self.create_new_game(opponent_name, player_name, game_id)
        return await self.get_game_state(game_id), mark

    # PUBLIC_INTERFACE
    async def make_game_move(
        self,
        game_id: Optional[str],
        cell_index: int,
        mark: Mark,
        action: MoveAction = MoveAction.PLACE,
    ) -> bool:
        """
        Place on an empty cell or replace an opponent mark; no turn order is enforced.
        Returns False if the game is missing or finished, or the move does not fit the cell.
        """
        game_id = self._game_id(game_id)
        try:
            mark, action = Mark(mark), MoveAction(action)
        except ValueError:
            logger.info("Move rejected: unknown mark %r or action %r", mark, action)
            return False
        try:
            state = await self.get_game_state(game_id)
            if state is None:
                logger.info("Move rejected: no game %s", game_id)
                return False
            next_state = apply_move(state, cell_index, mark, action, now_ms())
            if next_state is None:
                logger.info(
                    "Move rejected: %s %s at %s in game %s", mark.value, action.value, cell_index, game_id
                )
                return False
            await self.store.patch(self._game_path(game_id), _changed_fields(state, next_state))
            return True
        except StoreError:
            logger.exception("Error making move in game %s", game_id)
            return False

    # PUBLIC_INTERFACE
    async def undo_last_move(self, game_id: Optional[str] = None) -> bool:
        """Revert the newest move; False when there is no game or no history."""
        game_id = self._game_id(game_id)
        try:
            state = await self.get_game_state(game_id)
            if state is None:
                return False
            next_state = undo_move(state, now_ms())
            if next_state is None:
                return False
            await self.store.patch(self._game_path(game_id), _changed_fields(state, next_state))
            return True
        except StoreError:
            logger.exception("Error undoing move in game %s", game_id)
            return False

    # PUBLIC_INTERFACE
    async def reset_game(self, game_id: Optional[str] = None) -> None:
        """Clear board, history and result, keeping both player names."""
        game_id = self._game_id(game_id)
        try:
            current = await self.get_game_state(game_id)
            if current is not None:
                fresh = initial_game_state(current.player_x, current.player_o)
                await self.store.write(self._game_path(game_id), fresh.to_document())
        except StoreError:
            logger.exception("Error resetting game %s", game_id)

    # PUBLIC_INTERFACE
    async def delete_game(self, game_id: Optional[str] = None) -> None:
        game_id = self._game_id(game_id)
        try:
            await self.store.remove(self._game_path(game_id))
        except StoreError:
            logger.exception("Error deleting game %s", game_id)

    # PUBLIC_INTERFACE
    async def delete_all_games(self) -> None:
        try:
            await self.store.remove(self.games_root)
        except StoreError:
            logger.exception("Error deleting all games")

    # PUBLIC_INTERFACE
    def subscribe_to_game(self, game_id: str, callback: GameCallback) -> Unsubscribe:
        """Push the normalized game (None once deleted) to callback on every change."""
        def on_change(document: Optional[Any]):
            callback(normalize_game_state(document) if document is not None else None)

        return self.store.subscribe(self._game_path(game_id), on_change)

    # PUBLIC_INTERFACE
    async def check_connection(self) -> Optional[Dict[str, Any]]:
        """Round-trip a small payload through the store; transport errors propagate."""
        payload = {
            "message": "Store is connected!",
            "timestamp": now_ms(),
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        await self.store.write(CONNECTION_TEST_PATH, payload)
        return await self.store.read(CONNECTION_TEST_PATH)

    # PUBLIC_INTERFACE
    async def clear_connection_check(self) -> None:
        await self.store.remove(CONNECTION_TEST_PATH)

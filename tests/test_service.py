"""Tests for GameService against the in-memory store."""

import pytest

from bottle_flip_xo.exceptions import StoreError
from bottle_flip_xo.game_logic import replay_moves
from bottle_flip_xo.models import (
    CONNECTION_TEST_PATH,
    DEFAULT_GAME_ID,
    CellValue,
    GameStatus,
    Mark,
    MoveAction,
    MoveRecord,
)
from bottle_flip_xo.service import GameService

GAME_ID = DEFAULT_GAME_ID
PLACE, REPLACE = MoveAction.PLACE, MoveAction.REPLACE


async def new_game(service):
    await service.create_new_game("Ann", "Bob", GAME_ID)


class TestCreateAndRead:
    @pytest.mark.asyncio
    async def test_create_new_game(self, service):
        game_id = await service.create_new_game("Ann", "Bob")
        assert game_id == GAME_ID
        state = await service.get_game_state(game_id)
        assert state.player_x == "Ann"
        assert state.player_o == "Bob"
        assert state.board == [CellValue.EMPTY] * 9
        assert state.last_player == Mark.O
        assert state.next_mark == Mark.X
        assert state.game_status == GameStatus.ACTIVE
        assert state.move_history == []

    @pytest.mark.asyncio
    async def test_create_overwrites(self, service):
        await new_game(service)
        await service.make_game_move(GAME_ID, 0, Mark.X, PLACE)
        await service.create_new_game("Cy", "Di", GAME_ID)
        state = await service.get_game_state(GAME_ID)
        assert state.player_x == "Cy"
        assert state.move_history == []

    @pytest.mark.asyncio
    async def test_configured_default_game_id(self, store):
        service = GameService(store, default_game_id="lobby")
        assert await service.create_new_game("Ann", "Bob") == "lobby"
        assert await store.read("currentGame/lobby") is not None
        assert await service.make_game_move(None, 4, Mark.X, PLACE)
        assert (await service.get_game_state()).board[4] == CellValue.X
        assert await store.read(f"currentGame/{GAME_ID}") is None

    @pytest.mark.asyncio
    async def test_absent_game(self, service):
        assert await service.get_game_state("nope") is None

    @pytest.mark.asyncio
    async def test_stored_document_is_lossy_but_reads_normalized(self, service, store):
        await new_game(service)
        await service.make_game_move(GAME_ID, 4, Mark.X, PLACE)
        raw = await store.read(f"currentGame/{GAME_ID}")
        assert raw["board"] == {"4": "X"}
        assert "winner" not in raw
        state = await service.get_game_state(GAME_ID)
        assert state.board[4] == CellValue.X
        assert len(state.board) == 9


class TestStartGame:
    """Mark selection: create on first pick, join afterwards."""

    @pytest.mark.asyncio
    async def test_first_player_picking_o(self, service):
        game, mark = await service.start_game(Mark.O, "Ann", "Bob", GAME_ID)
        assert mark == Mark.O
        assert (game.player_x, game.player_o) == ("Bob", "Ann")

    @pytest.mark.asyncio
    async def test_second_player_joins_existing(self, service):
        await service.start_game(Mark.X, "Ann", "Bob", GAME_ID)
        await service.make_game_move(GAME_ID, 4, Mark.X, PLACE)
        game, mark = await service.start_game(Mark.X, "Bob", "Ann", GAME_ID)
        assert mark == Mark.O
        assert game.board[4] == CellValue.X


class TestMakeGameMove:
    """Place/replace scenarios end to end."""

    @pytest.mark.asyncio
    async def test_place_then_win(self, service):
        await new_game(service)
        for cell, mark in [(0, Mark.X), (3, Mark.O), (1, Mark.X), (4, Mark.O), (2, Mark.X)]:
            assert await service.make_game_move(GAME_ID, cell, mark, PLACE)
        state = await service.get_game_state(GAME_ID)
        assert state.game_status == GameStatus.FINISHED
        assert state.winner == CellValue.X
        assert not await service.make_game_move(GAME_ID, 5, Mark.O, PLACE)

    @pytest.mark.asyncio
    async def test_full_board_keeps_game_active(self, service):
        await new_game(service)
        layout = [Mark.X, Mark.O, Mark.X, Mark.X, Mark.O, Mark.O, Mark.O, Mark.X, Mark.X]
        for cell, mark in enumerate(layout):
            assert await service.make_game_move(GAME_ID, cell, mark, PLACE)
        state = await service.get_game_state(GAME_ID)
        assert all(cell != CellValue.EMPTY for cell in state.board)
        assert state.game_status == GameStatus.ACTIVE
        assert state.winner == CellValue.EMPTY

    @pytest.mark.asyncio
    async def test_invalid_place(self, service):
        await new_game(service)
        await service.make_game_move(GAME_ID, 0, Mark.X, PLACE)
        assert not await service.make_game_move(GAME_ID, 0, Mark.O, PLACE)
        state = await service.get_game_state(GAME_ID)
        assert state.board[0] == CellValue.X
        assert state.move_count == 1

    @pytest.mark.asyncio
    async def test_valid_replace_then_undo(self, service):
        await new_game(service)
        await service.make_game_move(GAME_ID, 0, Mark.X, PLACE)
        assert await service.make_game_move(GAME_ID, 0, Mark.O, REPLACE)
        state = await service.get_game_state(GAME_ID)
        assert state.board[0] == CellValue.O
        assert state.move_history[-1] == MoveRecord(
            player=Mark.O, cell_index=0, action=REPLACE, previous_value=CellValue.X
        )

        assert await service.undo_last_move(GAME_ID)
        state = await service.get_game_state(GAME_ID)
        assert state.board[0] == CellValue.X
        assert state.move_count == 1
        assert state.last_player == Mark.X

        assert await service.undo_last_move(GAME_ID)
        state = await service.get_game_state(GAME_ID)
        assert state.last_player == Mark.O
        assert state.move_history == []
        assert not await service.undo_last_move(GAME_ID)

    @pytest.mark.asyncio
    async def test_string_arguments_are_accepted(self, service):
        await new_game(service)
        assert await service.make_game_move(GAME_ID, 2, "O", "place")
        assert not await service.make_game_move(GAME_ID, 3, "Z", "place")
        assert not await service.make_game_move(GAME_ID, 3, "X", "flip")

    @pytest.mark.asyncio
    async def test_move_without_game(self, service):
        assert not await service.make_game_move(GAME_ID, 0, Mark.X, PLACE)

    @pytest.mark.asyncio
    async def test_move_on_malformed_document(self, service, store):
        await new_game(service)
        await store.patch(f"currentGame/{GAME_ID}", {
            "moveHistory": [{"cellIndex": "\u00b2", "player": "O"}],
            "lastMoveTime": float("nan"),
        })
        assert await service.make_game_move(GAME_ID, 4, Mark.X, PLACE) is True
        state = await service.get_game_state(GAME_ID)
        assert state.board[4] == CellValue.X
        assert [m.cell_index for m in state.move_history] == [0, 4]
        assert await service.undo_last_move(GAME_ID) is True

    @pytest.mark.asyncio
    async def test_replay_matches_board_after_mixed_play(self, service):
        await new_game(service)
        moves = [(4, Mark.X, PLACE), (0, Mark.O, PLACE), (4, Mark.O, REPLACE), (0, Mark.X, REPLACE), (8, Mark.X, PLACE)]
        for cell, mark, action in moves:
            assert await service.make_game_move(GAME_ID, cell, mark, action)
        await service.undo_last_move(GAME_ID)
        state = await service.get_game_state(GAME_ID)
        assert replay_moves(state.move_history) == state.board

    @pytest.mark.asyncio
    async def test_undo_reopens_won_game(self, service):
        await new_game(service)
        for cell in (0, 1, 2):
            await service.make_game_move(GAME_ID, cell, Mark.X, PLACE)
        assert await service.undo_last_move(GAME_ID)
        state = await service.get_game_state(GAME_ID)
        assert state.game_status == GameStatus.ACTIVE
        assert state.winner == CellValue.EMPTY

    @pytest.mark.asyncio
    async def test_concurrent_moves_last_write_wins(self, service, store):
        """Two clients reading the same state: the later patch overwrites the earlier move."""
        await new_game(service)
        stale = await store.read(f"currentGame/{GAME_ID}")
        original_read = store.read

        async def stale_read(path):
            return stale if path == f"currentGame/{GAME_ID}" else await original_read(path)

        store.read = stale_read
        assert await service.make_game_move(GAME_ID, 0, Mark.X, PLACE)
        assert await service.make_game_move(GAME_ID, 1, Mark.O, PLACE)
        store.read = original_read

        state = await service.get_game_state(GAME_ID)
        assert state.board[0] == CellValue.EMPTY
        assert state.board[1] == CellValue.O
        assert state.move_count == 1


class TestResetAndDelete:
    @pytest.mark.asyncio
    async def test_reset_keeps_names(self, service):
        await new_game(service)
        for cell in (0, 1, 2):
            await service.make_game_move(GAME_ID, cell, Mark.X, PLACE)
        await service.reset_game(GAME_ID)
        state = await service.get_game_state(GAME_ID)
        assert (state.player_x, state.player_o) == ("Ann", "Bob")
        assert state.board == [CellValue.EMPTY] * 9
        assert state.game_status == GameStatus.ACTIVE
        assert state.winner == CellValue.EMPTY
        assert state.move_history == []

    @pytest.mark.asyncio
    async def test_reset_without_game_does_nothing(self, service):
        await service.reset_game(GAME_ID)
        assert await service.get_game_state(GAME_ID) is None

    @pytest.mark.asyncio
    async def test_delete_game_and_all(self, service):
        await service.create_new_game("Ann", "Bob", "one")
        await service.create_new_game("Cy", "Di", "two")
        await service.delete_game("one")
        assert await service.get_game_state("one") is None
        assert await service.get_game_state("two") is not None
        await service.delete_all_games()
        assert await service.get_game_state("two") is None


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_callback_receives_normalized_states(self, service):
        seen = []
        unsubscribe = service.subscribe_to_game(GAME_ID, seen.append)
        await new_game(service)
        await service.make_game_move(GAME_ID, 4, Mark.O, PLACE)
        await service.delete_game(GAME_ID)
        unsubscribe()
        await new_game(service)

        assert seen[0] is None
        assert seen[1].player_x == "Ann"
        assert seen[2].board[4] == CellValue.O
        assert len(seen[2].board) == 9
        assert seen[3] is None
        assert len(seen) == 4


class TestStoreFailures:
    """Transport errors are logged and turned into safe defaults."""

    @pytest.mark.asyncio
    async def test_move_and_undo_return_false(self, service, store):
        await new_game(service)
        await service.make_game_move(GAME_ID, 0, Mark.X, PLACE)
        store.failing = {"patch"}
        assert not await service.make_game_move(GAME_ID, 1, Mark.O, PLACE)
        assert not await service.undo_last_move(GAME_ID)
        store.failing = {"read"}
        assert not await service.make_game_move(GAME_ID, 1, Mark.O, PLACE)

    @pytest.mark.asyncio
    async def test_reset_and_delete_are_no_ops(self, service, store):
        await new_game(service)
        store.failing = {"write", "remove"}
        await service.reset_game(GAME_ID)
        await service.delete_game(GAME_ID)
        await service.delete_all_games()
        store.failing = set()
        assert await service.get_game_state(GAME_ID) is not None

    @pytest.mark.asyncio
    async def test_reads_and_creates_propagate(self, service, store):
        store.failing = {"read", "write"}
        with pytest.raises(StoreError):
            await service.get_game_state(GAME_ID)
        with pytest.raises(StoreError):
            await service.create_new_game("Ann", "Bob")


class TestConnectionCheck:
    @pytest.mark.asyncio
    async def test_round_trip_and_clear(self, service, store):
        data = await service.check_connection()
        assert data["message"]
        assert data["timestamp"] > 0
        assert "createdAt" in data
        await service.clear_connection_check()
        assert await store.read(CONNECTION_TEST_PATH) is None

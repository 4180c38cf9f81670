import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import Settings, build_store, configure_logging, get_settings
from .exceptions import StoreError
from .models import CreateGameRequest, GameState, MoveRequest, StartGameRequest, StartGameResponse
from .observers import GameObserver, PollingObserver, SubscriptionObserver
from .service import GameService
from .store import Unsubscribe

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "game", "description": "Create, play, undo, reset and delete the shared game"},
    {"name": "diagnostics", "description": "Store connectivity checks"},
    {"name": "ws", "description": "Websockets for live player and presentation views"},
]

router = APIRouter()


def get_service(request: Request) -> GameService:
    return request.app.state.service


@router.get("/")
def health_check():
    """Health check endpoint."""
    return {"message": "Healthy"}


# ---------------- Game API ---------------- #

# PUBLIC_INTERFACE
@router.post("/game", response_model=GameState, tags=["game"], summary="Create (or overwrite) a game")
async def create_game(req: CreateGameRequest, service: GameService = Depends(get_service)):
    """Writes a fresh game with both player names, replacing any existing one."""
    game_id = await service.create_new_game(req.player_x, req.player_o, req.game_id)
    game = await service.get_game_state(game_id)
    if not game:
        raise HTTPException(status_code=503, detail="Game was written but could not be read back.")
    return game


# PUBLIC_INTERFACE
@router.post("/game/start", response_model=StartGameResponse, tags=["game"], summary="Pick a mark and join or create")
async def start_game(req: StartGameRequest, service: GameService = Depends(get_service)):
    """Joins the running game, or creates one with the caller on the chosen mark."""
    game, mark = await service.start_game(req.mark, req.player_name, req.opponent_name, req.game_id)
    if not game:
        raise HTTPException(status_code=503, detail="Game was written but could not be read back.")
    return StartGameResponse(mark=mark, game=game)


# PUBLIC_INTERFACE
@router.get("/game/{game_id}", response_model=GameState, tags=["game"], summary="Get game state")
async def get_game(game_id: str, service: GameService = Depends(get_service)):
    """Normalized game record (also what the presentation view polls)."""
    game = await service.get_game_state(game_id)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found.")
    return game


# PUBLIC_INTERFACE
@router.post("/game/{game_id}/move", response_model=GameState, tags=["game"], summary="Place or replace a mark")
async def make_a_move(game_id: str, req: MoveRequest, service: GameService = Depends(get_service)):
    """Either player may move at any time; the cell decides whether the action fits."""
    if not await service.make_game_move(game_id, req.cell_index, req.player, req.action):
        raise HTTPException(status_code=400, detail="Invalid move.")
    return await get_game(game_id, service)


# PUBLIC_INTERFACE
@router.post("/game/{game_id}/undo", response_model=GameState, tags=["game"], summary="Undo the last move")
async def undo_move(game_id: str, service: GameService = Depends(get_service)):
    if not await service.undo_last_move(game_id):
        raise HTTPException(status_code=400, detail="Nothing to undo.")
    return await get_game(game_id, service)


# PUBLIC_INTERFACE
@router.post("/game/{game_id}/reset", response_model=GameState, tags=["game"], summary="Reset the board")
async def reset_game(game_id: str, service: GameService = Depends(get_service)):
    """Empty board and history; player names are kept."""
    await service.reset_game(game_id)
    return await get_game(game_id, service)


# PUBLIC_INTERFACE
@router.delete("/game/{game_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["game"], summary="Delete a game")
async def delete_game(game_id: str, service: GameService = Depends(get_service)):
    await service.delete_game(game_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# PUBLIC_INTERFACE
@router.delete("/games", status_code=status.HTTP_204_NO_CONTENT, tags=["game"], summary="Delete all games")
async def delete_all_games(service: GameService = Depends(get_service)):
    await service.delete_all_games()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------- Diagnostics ------------------ #

# PUBLIC_INTERFACE
@router.post("/connection-test", tags=["diagnostics"], summary="Write and read back a test payload")
async def connection_test(service: GameService = Depends(get_service)):
    data = await service.check_connection()
    if data is None:
        raise HTTPException(status_code=503, detail="Write succeeded but read returned empty. Check store rules.")
    return {"connected": True, "data": data}


# PUBLIC_INTERFACE
@router.delete("/connection-test", status_code=status.HTTP_204_NO_CONTENT, tags=["diagnostics"], summary="Remove the test payload")
async def clear_connection_test(service: GameService = Depends(get_service)):
    await service.clear_connection_check()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --------------- WebSocket Real-time Game Updates --------------- #

def game_message(state: Optional[GameState]) -> Dict[str, Any]:
    if state is None:
        return {"type": "game_deleted"}
    return {"type": "game_state", "state": state.to_document()}


class ConnectionManager:
    """Manages active websocket connections and the game feed behind each one."""
    def __init__(self):
        self.active_connections: Dict[int, Tuple[str, Unsubscribe, asyncio.Task]] = {}

    async def connect(self, game_id: str, websocket: WebSocket, observer: GameObserver):
        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue()
        loop = asyncio.get_running_loop()
        # Store callbacks may fire off the event loop thread.
        unsubscribe = observer.observe(lambda state: loop.call_soon_threadsafe(queue.put_nowait, state))
        sender = loop.create_task(self._forward(websocket, queue))
        self.active_connections[id(websocket)] = (game_id, unsubscribe, sender)

    async def _forward(self, websocket: WebSocket, queue: asyncio.Queue):
        """Send each update, in order, to one client."""
        while True:
            state = await queue.get()
            try:
                await websocket.send_json(game_message(state))
            except (WebSocketDisconnect, RuntimeError):
                return

    def disconnect(self, websocket: WebSocket):
        entry = self.active_connections.pop(id(websocket), None)
        if entry is not None:
            _, unsubscribe, sender = entry
            unsubscribe()
            sender.cancel()

    def connection_count(self, game_id: str) -> int:
        return sum(1 for game, _, _ in self.active_connections.values() if game == game_id)


async def handle_command(service: GameService, game_id: str, data: Any) -> Optional[str]:
    """Run one websocket command; returns an error string, or None on success."""
    if not isinstance(data, dict):
        return "Invalid command"
    action = data.get("action")
    if action in ("place", "replace"):
        try:
            req = MoveRequest.model_validate(data)
        except ValidationError:
            return "Invalid move"
        if not await service.make_game_move(game_id, req.cell_index, req.player, req.action):
            return "Invalid move"
    elif action == "undo":
        if not await service.undo_last_move(game_id):
            return "Nothing to undo"
    elif action == "reset":
        await service.reset_game(game_id)
    elif action == "delete":
        await service.delete_game(game_id)
    elif action == "delete_all":
        await service.delete_all_games()
    else:
        return "Invalid command"
    return None


async def serve_game_socket(websocket: WebSocket, game_id: str, observer: GameObserver):
    service: GameService = websocket.app.state.service
    manager: ConnectionManager = websocket.app.state.connections
    await manager.connect(game_id, websocket, observer)
    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"error": "Invalid command"})
                continue
            try:
                error = await handle_command(service, game_id, data)
            except StoreError as err:
                error = f"Store unavailable: {err}"
            if error:
                await websocket.send_json({"error": error})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)


# PUBLIC_INTERFACE
@router.websocket("/ws/game/{game_id}")
async def game_websocket(websocket: WebSocket, game_id: str):
    """
    Player view: pushes every change of the game as it happens.

    Send commands, receive the new state through the same socket.
    See /ws/docs for the message format.
    """
    service: GameService = websocket.app.state.service
    await serve_game_socket(websocket, game_id, SubscriptionObserver(service, game_id))


# PUBLIC_INTERFACE
@router.websocket("/ws/present/{game_id}")
async def presentation_websocket(websocket: WebSocket, game_id: str):
    """Presentation view: polls the game and sends a message only when it changed."""
    service: GameService = websocket.app.state.service
    settings: Settings = websocket.app.state.settings
    await serve_game_socket(websocket, game_id, PollingObserver(service, game_id, settings.poll_interval))


# PUBLIC_INTERFACE
@router.get("/ws/docs", tags=["ws"], summary="Websocket API usage help")
def websocket_usage():
    """
    API docs for websockets:
    - Endpoints: /ws/game/{game_id} (push), /ws/present/{game_id} (polling)
    - Protocol: JSON messages from client:
        - { "action": "place" | "replace", "cellIndex": 4, "player": "X" }
        - { "action": "undo" | "reset" | "delete" | "delete_all" }
    - Responses are { "type": "game_state", "state": {...GameState...}} or { "type": "game_deleted" }
    - Errors { "error": "<string>" }
    """
    return {
        "endpoints": ["/ws/game/{game_id}", "/ws/present/{game_id}"],
        "message": {
            "action": "place",
            "cellIndex": 4,
            "player": "X",
        },
        "response": {
            "type": "game_state",
            "state": "GameState schema"
        }
    }


async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": f"Store unavailable: {exc}"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    aclose = getattr(app.state.service.store, "aclose", None)
    if aclose is not None:
        await aclose()


# PUBLIC_INTERFACE
def create_app(service: Optional[GameService] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API around a game service (one is made from settings if not given)."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Bottle Flip XO Backend",
        description="REST and WebSocket API for the shared Bottle Flip XO game: moves, undo, reset and live views.",
        version="1.0.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StoreError, store_error_handler)

    app.state.settings = settings
    app.state.service = service or GameService(
        build_store(settings), games_root=settings.games_root, default_game_id=settings.default_game_id
    )
    app.state.connections = ConnectionManager()
    app.include_router(router)
    return app


app = create_app()

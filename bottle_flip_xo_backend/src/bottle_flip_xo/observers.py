"""
Two ways for a client to watch a game, behind one observe() call.

SubscriptionObserver relies on the store pushing changes; PollingObserver
re-reads on a fixed interval and reports only when the game differs from what
it last delivered (the presentation view uses this). Both hand the callback a
normalized GameState, or None when no game exists.
"""

import asyncio
import logging
from typing import Optional, Protocol

from .models import GameState
from .service import GameCallback, GameService
from .store import Unsubscribe

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


class GameObserver(Protocol):
    def observe(self, callback: GameCallback) -> Unsubscribe:
        """Start delivering game updates to callback; the returned handle stops it."""
        ...


class SubscriptionObserver:
    """Push-based observation through the store's change feed."""

    def __init__(self, service: GameService, game_id: Optional[str] = None):
        self.service = service
        self.game_id = game_id or service.default_game_id

    def observe(self, callback: GameCallback) -> Unsubscribe:
        return self.service.subscribe_to_game(self.game_id, callback)


class PollingObserver:
    """
    Interval-based observation. Must be started from a running event loop.

    Read failures are logged and the loop carries on with the next cycle.
    """

    def __init__(self, service: GameService, game_id: Optional[str] = None, interval: float = DEFAULT_POLL_INTERVAL):
        self.service = service
        self.game_id = game_id or service.default_game_id
        self.interval = interval

    def observe(self, callback: GameCallback) -> Unsubscribe:
        task = asyncio.get_running_loop().create_task(self._poll(callback))

        def unsubscribe():
            task.cancel()

        return unsubscribe

    async def _poll(self, callback: GameCallback) -> None:
        delivered = False
        last: Optional[GameState] = None
        while True:
            try:
                state = await self.service.get_game_state(self.game_id)
                if not delivered or state != last:
                    delivered, last = True, state
                    callback(state)
            except Exception:
                logger.exception("Error polling game %s", self.game_id)
            await asyncio.sleep(self.interval)

"""
Bottle Flip XO backend.

Shared-state core for a two-device tic-tac-toe variant where either side may
place on an empty cell or replace an opponent's mark at any time, plus the
HTTP/WebSocket surface used by the player and presentation views.
"""

__version__ = "1.0.0"

"""Board-derived signals consumed by the stop-condition engine.

The time budget only needs three read-only numbers from the game state: how
many of our moves are probably left, the linear size of the board including
its one-point frame, and the current move number. Any object exposing those
three methods satisfies :class:`BoardSignals`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import chess


MIN_MOVES_LEFT = 30
MIN_FREE_RATIO = 0.2

CHESS_BOARD_FRAME = 1
CHESS_MIN_MOVES_LEFT = 10


class BoardSignals(Protocol):
    def estimated_moves_left(self) -> int:
        ...

    def board_linear_size(self) -> int:
        ...

    def current_move_number(self) -> int:
        ...


@dataclass(frozen=True)
class GoBoardSignals:
    size: int
    move_number: int = 0
    free_points: Optional[int] = None
    moves_left: Optional[int] = None

    def estimated_moves_left(self) -> int:
        if self.moves_left is not None:
            return self.moves_left
        total_points = self.size * self.size
        free = total_points if self.free_points is None else self.free_points
        # Roughly a fifth of the board stays empty at the end; we only play half the moves.
        moves_left = int((free - total_points * MIN_FREE_RATIO) // 2)
        return max(MIN_MOVES_LEFT, moves_left)

    def board_linear_size(self) -> int:
        return self.size + 2

    def current_move_number(self) -> int:
        return self.move_number


class ChessBoardSignals:
    """Adapts a ``chess.Board`` to the time budget.

    The 8x8 board is reported with a one-square frame (linear size 10) so the
    interior area used for the opening/endgame markers is the 64 playable
    squares. The move number is the ply count.
    """

    def __init__(self, board: chess.Board) -> None:
        self.board = board

    def estimated_moves_left(self) -> int:
        return max(CHESS_MIN_MOVES_LEFT, 45 - self.board.fullmove_number // 2)

    def board_linear_size(self) -> int:
        return 8 + 2 * CHESS_BOARD_FRAME

    def current_move_number(self) -> int:
        return self.board.ply()

"""Per-move time budgeting for the JaskFish search engines.

The budget for a game lives in a :class:`BudgetRecord`. It is created from a
compact budget spec (``"1200"``, ``"_1200"``, ``"=5000"``, ``"_=5000"``) or from
the controller's time settings, refreshed by "time left" notifications, and
turned into a pair of :class:`StopThresholds` at the start of every move. The
search stops once the *desired* threshold is reached and never runs past the
*worst* one.
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Union

import chess

import timeutils
from board_signals import BoardSignals, ChessBoardSignals, GoBoardSignals


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


# Slack used when comparing derived times; absorbs float rounding.
TIME_EPSILON = 0.001


class TimeControlError(Exception):
    """A caller handed the budget model something it cannot use."""


class BudgetSpecError(TimeControlError, ValueError):
    pass


class TimeInvariantError(AssertionError):
    """Internal invariant broken; indicates a bug or misconfigured constants."""


# ---------------------------------------------------------------------------
# Budget model
# ---------------------------------------------------------------------------


class Period(Enum):
    NONE = "none"
    TOTAL = "total"
    MOVE = "move"


class Dimension(Enum):
    MOVE_COUNT = "move_count"
    WALLCLOCK = "wallclock"


@dataclass
class MoveCountBudget:
    games: int


@dataclass
class WallClockBudget:
    main_time: float = 0.0
    # Per move: per period for japanese byoyomi, per stone for canadian.
    byoyomi_time: float = 0.0
    byoyomi_periods: int = 0
    timer_start: Optional[float] = None
    max_time: float = 0.0
    recommended_time: float = 0.0


@dataclass
class BudgetRecord:
    period: Period = Period.NONE
    budget: Union[MoveCountBudget, WallClockBudget] = field(default_factory=WallClockBudget)

    @property
    def dimension(self) -> Dimension:
        if isinstance(self.budget, MoveCountBudget):
            return Dimension.MOVE_COUNT
        return Dimension.WALLCLOCK

    @property
    def wallclock(self) -> WallClockBudget:
        if not isinstance(self.budget, WallClockBudget):
            raise TimeInvariantError("wall-clock fields read from a move-count budget")
        return self.budget

    @property
    def move_count(self) -> MoveCountBudget:
        if not isinstance(self.budget, MoveCountBudget):
            raise TimeInvariantError("playout count read from a wall-clock budget")
        return self.budget


@dataclass(frozen=True)
class StopThresholds:
    """Stopping points for one move.

    For move-count budgets ``desired`` and ``worst`` are playout counts. For
    wall-clock budgets they are absolute :func:`timeutils.now` timestamps and
    may already lie in the past when lag was underestimated.
    """

    dimension: Dimension
    desired: float
    worst: float
    desired_time: Optional[float] = None
    worst_time: Optional[float] = None
    net_lag: Optional[float] = None

    def desired_reached(self, progress: float) -> bool:
        return progress >= self.desired

    def worst_reached(self, progress: float) -> bool:
        return progress >= self.worst


# ---------------------------------------------------------------------------
# Configuration model
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TimeConfig:
    # Lag assumed for every move until it can be estimated from real traffic.
    net_lag: float = 2.0
    reserved_byoyomi_percent: float = 15
    main_time_extension: float = 3.0
    byoyomi_extension: float = 1.1
    fuseki_end_percent: int = 20
    yose_start_percent: int = 40
    min_moves_left: int = 30

    def clamp(self) -> "TimeConfig":
        return replace(
            self,
            net_lag=max(0.0, self.net_lag),
            reserved_byoyomi_percent=_clamp(self.reserved_byoyomi_percent, 0.0, 100.0),
            main_time_extension=max(1.0, self.main_time_extension),
            byoyomi_extension=_clamp(self.byoyomi_extension, 1.0, 2.0),
            fuseki_end_percent=int(_clamp(self.fuseki_end_percent, 0, 100)),
            yose_start_percent=int(_clamp(self.yose_start_percent, 0, 100)),
            min_moves_left=max(1, int(self.min_moves_left)),
        )


class TimeConfigRegistry:
    PRESETS: Dict[str, TimeConfig] = {
        "default": TimeConfig(),
        "blitz": TimeConfig(net_lag=0.5),
        "server": TimeConfig(net_lag=4.0, reserved_byoyomi_percent=25),
    }

    @classmethod
    def resolve(cls, preset: str) -> TimeConfig:
        if preset not in cls.PRESETS:
            raise ValueError(f"Unknown time preset '{preset}'")
        return cls.PRESETS[preset].clamp()


DEFAULT_CONFIG = TimeConfigRegistry.resolve("default")


class BudgetReporter:
    def __init__(self, *, logger: Callable[[str], None], level: int = 1):
        self._log = logger
        self.level = level

    def debug(self, level: int, message: str) -> None:
        if self.level >= level:
            self._log(message)


# ---------------------------------------------------------------------------
# Budget spec parsing
# ---------------------------------------------------------------------------


_GAMES_RE = re.compile(r"=(\d+)")
_SECONDS_RE = re.compile(r"\d+(?:\.\d*)?")


def parse_budget_spec(text: str) -> BudgetRecord:
    """Parse ``[_]<seconds>`` or ``[_]=<playouts>``.

    A leading ``_`` makes the amount cover the whole game instead of one move.
    """
    rest = text.strip()
    period = Period.MOVE
    if rest.startswith("_"):
        period = Period.TOTAL
        rest = rest[1:]

    match = _GAMES_RE.fullmatch(rest)
    if match:
        return BudgetRecord(period=period, budget=MoveCountBudget(games=int(match.group(1))))
    if _SECONDS_RE.fullmatch(rest):
        return BudgetRecord(period=period, budget=WallClockBudget(main_time=float(rest)))
    raise BudgetSpecError(f"Invalid time budget '{text}'")


# ---------------------------------------------------------------------------
# Controller sync
# ---------------------------------------------------------------------------


def apply_settings(
    record: BudgetRecord,
    main_time: float,
    byoyomi_time: float,
    byoyomi_stones: int,
    byoyomi_periods: int,
) -> None:
    """Apply the controller's time settings to ``record``.

    Byoyomi time without a stone count has no usable limit; the record is left
    without a period and the engine has to pick its own default budget.
    """
    if min(main_time, byoyomi_time, byoyomi_stones, byoyomi_periods) < 0:
        raise TimeControlError(
            f"negative time settings: {main_time} {byoyomi_time} {byoyomi_stones} {byoyomi_periods}"
        )
    if byoyomi_time > 0 and byoyomi_stones == 0:
        record.period = Period.NONE
        return

    per_move = float(byoyomi_time)
    if byoyomi_stones > 0:
        per_move /= byoyomi_stones
    record.period = Period.TOTAL
    record.budget = WallClockBudget(
        main_time=float(main_time),
        byoyomi_time=per_move,
        byoyomi_periods=int(byoyomi_periods),
    )


def apply_remaining(record: BudgetRecord, time_left: float, stones_left: int) -> None:
    """Apply a controller "time left" notification.

    Some controllers never send one before the first move, so
    :func:`apply_settings` followed directly by :func:`compute_stop_conditions`
    has to work as well.
    """
    if record.period == Period.NONE:
        raise TimeControlError("time left received without time settings")
    if not isinstance(record.budget, WallClockBudget):
        record.budget = WallClockBudget()
    clock = record.budget

    if clock.byoyomi_periods > 0 and stones_left > 0:
        # Japanese byoyomi: the stones field carries the periods left.
        clock.byoyomi_periods = stones_left
        stones_left = 1

    if stones_left == 0:
        record.period = Period.TOTAL
        clock.main_time = float(time_left)
    else:
        record.period = Period.MOVE
        clock.main_time = 0.0
        clock.byoyomi_time = float(time_left) / stones_left
        clock.max_time = float(time_left)
        clock.recommended_time = clock.byoyomi_time


def start_timer(record: BudgetRecord, now: Optional[float] = None) -> None:
    if record.period == Period.NONE or record.dimension != Dimension.WALLCLOCK:
        return
    record.wallclock.timer_start = timeutils.now() if now is None else now


def in_byoyomi(record: BudgetRecord) -> bool:
    """True when we are in byoyomi, or main time per move is no better than it."""
    if record.dimension != Dimension.WALLCLOCK or record.period != Period.MOVE:
        raise TimeInvariantError("byoyomi check needs a per-move wall-clock budget")
    clock = record.wallclock
    if not clock.byoyomi_time:
        return False
    if not clock.main_time:
        return True
    return clock.main_time <= clock.byoyomi_time + TIME_EPSILON


# ---------------------------------------------------------------------------
# Stop conditions
# ---------------------------------------------------------------------------


def _playout_stop(record: BudgetRecord, board: BoardSignals) -> StopThresholds:
    budget = record.move_count
    if record.period == Period.TOTAL:
        record.period = Period.MOVE
        budget.games //= max(1, board.estimated_moves_left())
    # desired == worst: run exactly this many playouts, no early exit on consensus.
    return StopThresholds(Dimension.MOVE_COUNT, desired=budget.games, worst=budget.games)


def _spread_total_time(clock: WallClockBudget, moves_left: int, net_lag: float) -> int:
    if clock.byoyomi_time <= 0:
        return moves_left
    # With N > 2 periods, spend N - 2 of them like main time; the next one is
    # spendable too, the last one stays as insurance against lag.
    if clock.byoyomi_periods > 2:
        clock.max_time += (clock.byoyomi_periods - 2) * clock.byoyomi_time
    clock.max_time += clock.byoyomi_time
    clock.recommended_time = clock.max_time

    # Never play slower per move in main time than byoyomi allows.
    actual_byoyomi = clock.byoyomi_time - net_lag
    if actual_byoyomi > 0:
        main_moves = int(clock.max_time / actual_byoyomi)
        moves_left = min(moves_left, main_moves)
        moves_left = max(1, moves_left)
    return moves_left


def _main_time_desired(
    clock: WallClockBudget, board: BoardSignals, config: TimeConfig, desired_time: float
) -> float:
    interior = (board.board_linear_size() - 2) ** 2
    fuseki_end = config.fuseki_end_percent * interior // 100
    yose_start = config.yose_start_percent * interior // 100
    if fuseki_end >= yose_start:
        raise TimeInvariantError(f"fuseki end {fuseki_end} not before yose start {yose_start}")

    move = board.current_move_number()
    if move >= yose_start:
        return desired_time

    # Halved: only our own moves count.
    moves_to_yose = (yose_start - move) // 2
    left_at_yose = max(board.estimated_moves_left() - moves_to_yose, config.min_moves_left)
    longest_time = clock.max_time / left_at_yose
    if longest_time < desired_time:
        return desired_time
    if move < fuseki_end:
        return desired_time + (longest_time - desired_time) * move / fuseki_end
    return longest_time


def compute_stop_conditions(
    record: BudgetRecord,
    board: BoardSignals,
    config: Optional[TimeConfig] = None,
    *,
    now: Optional[float] = None,
    reporter: Optional[BudgetReporter] = None,
) -> StopThresholds:
    """Derive this move's stop thresholds, converting ``record`` to per-move.

    ``now`` defaults to :func:`timeutils.now`; pass it explicitly to make the
    result reproducible.
    """
    if record.period == Period.NONE:
        raise TimeControlError("no time limit configured; pick a default budget first")
    config = (config or DEFAULT_CONFIG).clamp()
    report = reporter.debug if reporter else (lambda *_: None)

    if record.dimension == Dimension.MOVE_COUNT:
        return _playout_stop(record, board)

    clock = record.wallclock
    now = timeutils.now() if now is None else now
    net_lag = config.net_lag
    if clock.timer_start is None:
        clock.timer_start = now
    else:
        # TODO: track lag across moves instead of charging only this one.
        net_lag += now - clock.timer_start

    if clock.main_time > 0:
        clock.max_time = clock.recommended_time = clock.main_time

    if record.period == Period.TOTAL:
        moves_left = _spread_total_time(clock, board.estimated_moves_left(), net_lag)
        record.period = Period.MOVE
        clock.recommended_time /= max(1, moves_left)

    clock.recommended_time = max(0.0, clock.recommended_time)
    clock.max_time = max(0.0, clock.max_time)
    if clock.recommended_time > clock.max_time + TIME_EPSILON:
        raise TimeInvariantError(
            f"recommended time {clock.recommended_time:.3f} exceeds max time {clock.max_time:.3f}"
        )

    safety_margin = config.reserved_byoyomi_percent * clock.byoyomi_time / 100
    if safety_margin > config.net_lag and clock.recommended_time >= clock.max_time - net_lag:
        net_lag = safety_margin

    report(
        1,
        f"recommended_time {clock.recommended_time:.2f}, max_time {clock.max_time:.2f}, "
        f"byoyomi {clock.byoyomi_time:.2f}, lag {net_lag:.2f}",
    )

    desired_time = clock.recommended_time
    if in_byoyomi(record):
        # recommended_time is the mean of desired and worst.
        worst_time = desired_time * config.byoyomi_extension
        desired_time *= 2 - config.byoyomi_extension
    else:
        desired_time = _main_time_desired(clock, board, config, desired_time)
        worst_time = desired_time * config.main_time_extension
    worst_time = min(worst_time, clock.max_time)
    desired_time = min(desired_time, worst_time)

    report(2, f"desired time {desired_time:.2f}, worst {worst_time:.2f}")

    return StopThresholds(
        Dimension.WALLCLOCK,
        desired=clock.timer_start + desired_time - net_lag,
        worst=clock.timer_start + worst_time - net_lag,
        desired_time=desired_time,
        worst_time=worst_time,
        net_lag=net_lag,
    )


# ---------------------------------------------------------------------------
# Command line entrypoint
# ---------------------------------------------------------------------------


def _board_from_args(args: argparse.Namespace) -> BoardSignals:
    if args.fen:
        return ChessBoardSignals(chess.Board(args.fen))
    return GoBoardSignals(
        size=args.board_size,
        move_number=args.move,
        free_points=args.free_points,
        moves_left=args.moves_left,
    )


def _record_from_args(args: argparse.Namespace) -> BudgetRecord:
    if args.spec is not None:
        record = parse_budget_spec(args.spec)
    else:
        record = BudgetRecord()
        main_time, byoyomi_time, stones, periods = args.settings
        if not (stones.is_integer() and periods.is_integer()):
            raise TimeControlError(f"byoyomi stones and periods must be whole numbers: {stones} {periods}")
        apply_settings(record, main_time, byoyomi_time, int(stones), int(periods))
    if args.remaining is not None:
        time_left, stones_left = args.remaining
        apply_remaining(record, time_left, int(stones_left))
    return record


def timecontrol_main(argv: Optional[Sequence[str]] = None) -> int:
    default_preset = os.environ.get("TIMECONTROL_PRESET", "default")
    parser = argparse.ArgumentParser(description="Compute the stop thresholds for one move")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--spec", help="Budget spec: [_]<seconds> or [_]=<playouts>")
    source.add_argument(
        "--settings",
        nargs=4,
        type=float,
        metavar=("MAIN", "BYOYOMI", "STONES", "PERIODS"),
        help="Controller time settings",
    )
    parser.add_argument(
        "--remaining", nargs=2, type=float, metavar=("TIME", "STONES"), help="Controller time left notification"
    )
    parser.add_argument("--fen", default="", help="Derive board signals from a chess position")
    parser.add_argument("--board-size", type=int, default=19, help="Go board size")
    parser.add_argument("--move", type=int, default=0, help="Current move number")
    parser.add_argument("--free-points", type=int, default=None, help="Empty points on the go board")
    parser.add_argument("--moves-left", type=int, default=None, help="Override the estimate of our moves left")
    parser.add_argument(
        "--preset",
        choices=sorted(TimeConfigRegistry.PRESETS.keys()),
        default=default_preset,
        help="Time configuration preset",
    )
    parser.add_argument("--net-lag", type=float, default=None, help="Override the assumed network lag (seconds)")
    parser.add_argument("--debug", type=int, default=0, help="Diagnostic verbosity (0-2)")
    args = parser.parse_args(list(argv) if argv is not None else None)

    config = TimeConfigRegistry.resolve(args.preset)
    if args.net_lag is not None:
        config = replace(config, net_lag=args.net_lag).clamp()
    reporter = BudgetReporter(logger=lambda line: print(f"info string {line}"), level=args.debug)

    try:
        record = _record_from_args(args)
        board = _board_from_args(args)
        start = timeutils.now()
        start_timer(record, start)
        stop = compute_stop_conditions(record, board, config, now=start, reporter=reporter)
    except (TimeControlError, ValueError) as exc:
        print(f"info string Error computing stop conditions: {exc}")
        return 2

    if stop.dimension == Dimension.MOVE_COUNT:
        print(timeutils.info_text(f"playouts desired={int(stop.desired)} worst={int(stop.worst)}"))
    else:
        print(
            timeutils.info_text(
                f"time desired={stop.desired - start:.2f}s worst={stop.worst - start:.2f}s "
                f"lag={stop.net_lag:.2f}s"
            )
        )
    return 0


if __name__ == "__main__":
    sys.exit(timecontrol_main())

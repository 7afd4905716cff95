import pytest

from timecontrol import (
    BudgetSpecError,
    Dimension,
    MoveCountBudget,
    Period,
    TimeInvariantError,
    WallClockBudget,
    parse_budget_spec,
)


def test_parse_seconds_is_per_move_wallclock() -> None:
    record = parse_budget_spec("1200")
    assert record.period == Period.MOVE
    assert record.dimension == Dimension.WALLCLOCK
    assert record.budget == WallClockBudget(main_time=1200.0)
    assert record.wallclock.byoyomi_time == 0.0
    assert record.wallclock.byoyomi_periods == 0
    assert record.wallclock.timer_start is None


def test_parse_leading_underscore_selects_whole_game() -> None:
    record = parse_budget_spec("_1200")
    assert record.period == Period.TOTAL
    assert record.wallclock.main_time == 1200.0


def test_parse_decimal_seconds() -> None:
    assert parse_budget_spec("2.5").wallclock.main_time == pytest.approx(2.5)


def test_parse_playout_counts() -> None:
    record = parse_budget_spec("=5000")
    assert record.period == Period.MOVE
    assert record.dimension == Dimension.MOVE_COUNT
    assert record.budget == MoveCountBudget(games=5000)

    total = parse_budget_spec("_=5000")
    assert total.period == Period.TOTAL
    assert total.move_count.games == 5000


@pytest.mark.parametrize("text", ["abc", "", "_", "=", "=abc", "12abc", "-5", "_=-3", "1e3"])
def test_parse_rejects_malformed_specs(text: str) -> None:
    with pytest.raises(BudgetSpecError):
        parse_budget_spec(text)


def test_parse_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        parse_budget_spec("abc")


def test_inactive_variant_cannot_be_read() -> None:
    with pytest.raises(TimeInvariantError):
        parse_budget_spec("=100").wallclock
    with pytest.raises(TimeInvariantError):
        parse_budget_spec("100").move_count

import pandas as pd
import pytest

from goldsilver.engine import GOLD_TO_SILVER, SILVER_TO_GOLD, StrategyParameters, ValidationError, simulate


def _series_from_ratios(ratios, silver=10.0, start="2020-01-01"):
    dates = pd.date_range(start, periods=len(ratios), freq="D").strftime("%Y-%m-%d")
    return pd.DataFrame({"date": dates, "gold": [r * silver for r in ratios], "silver": [silver] * len(ratios)})


def _params(start="2020-01-01", end="2020-12-31", **kwargs):
    return StrategyParameters(start_date=start, end_date=end, **kwargs)


def test_switch_matches_hand_calculation():
    series = pd.DataFrame(
        {"date": ["2020-01-01", "2020-01-02"], "gold": [1500.0, 1550.0], "silver": [17.0, 16.0]}
    )
    params = _params(end="2020-01-02", start_asset="gold", start_amount=10_000.0, up_threshold=91.0)

    result = simulate(series, params)
    day1, day2 = result.points.iloc[0], result.points.iloc[1]

    assert day1["ratio"] == pytest.approx(1500 / 17)
    assert day1["portfolio_value"] == pytest.approx(10_000.0)
    assert day1["portfolio_pct"] == pytest.approx(0.0)
    assert day1["switched"] is None

    expected_units = (10_000.0 / 1500.0) * 1550.0 / 16.0
    assert day2["ratio"] == pytest.approx(96.875)
    assert day2["switched"] == GOLD_TO_SILVER
    assert day2["held_asset"] == "silver"
    assert day2["held_units"] == pytest.approx(expected_units)
    assert day2["portfolio_value"] == pytest.approx(10_333.333333, rel=1e-9)
    assert day2["portfolio_pct"] == pytest.approx(3.333333, rel=1e-6)
    assert day2["gold_only_value"] == pytest.approx(10_000.0 / 1500.0 * 1550.0)
    assert day2["silver_only_value"] == pytest.approx(10_000.0 / 17.0 * 16.0)
    assert day2["silver_pct"] == pytest.approx((10_000.0 / 17.0 * 16.0 / 10_000.0 - 1) * 100)
    assert result.switches == 1


def test_upward_crossing_fires_on_the_crossing_day_only():
    result = simulate(_series_from_ratios([84.9, 86.0]), _params(up_threshold=85.0))

    assert list(result.points["switched"]) == [None, GOLD_TO_SILVER]


def test_threshold_already_met_on_first_day_fires_at_index_zero():
    result = simulate(_series_from_ratios([86.0, 87.0]), _params(up_threshold=85.0))

    assert list(result.points["switched"]) == [GOLD_TO_SILVER, None]
    first = result.points.iloc[0]
    assert first["held_asset"] == "silver"
    assert first["portfolio_value"] == pytest.approx(10_000.0)


def test_no_repeat_switch_while_ratio_stays_above():
    result = simulate(_series_from_ratios([84.0, 86.0, 87.0, 88.0, 90.0]), _params(up_threshold=85.0))

    assert result.switches == 1
    assert list(result.points["held_asset"]) == ["gold", "silver", "silver", "silver", "silver"]


def test_round_trip_between_metals():
    ratios = [80.0, 90.0, 70.0, 55.0, 50.0]
    result = simulate(_series_from_ratios(ratios), _params(up_threshold=85.0, down_threshold=60.0))

    assert list(result.points["switched"]) == [None, GOLD_TO_SILVER, None, SILVER_TO_GOLD, None]
    assert result.switches == 2
    # value is preserved across each switch at that day's closing prices
    values = result.points["portfolio_value"].tolist()
    units = result.points["held_units"].tolist()
    assert values[3] == pytest.approx(units[2] * 10.0)


def test_silver_start_switches_down_on_first_day():
    result = simulate(_series_from_ratios([55.0, 58.0]), _params(start_asset="silver", down_threshold=60.0))

    assert list(result.points["switched"]) == [SILVER_TO_GOLD, None]


def test_only_the_held_asset_rule_applies_with_inconsistent_thresholds():
    # up below down: both rules are satisfiable at ratio 70
    result = simulate(_series_from_ratios([70.0, 70.0, 70.0]), _params(up_threshold=50.0, down_threshold=90.0))

    assert list(result.points["switched"]) == [GOLD_TO_SILVER, None, None]
    assert result.switches == 1


def test_without_thresholds_strategy_is_buy_and_hold():
    series = _series_from_ratios([80.0, 95.0, 50.0])
    result = simulate(series, _params(start_asset="gold"))

    assert result.switches == 0
    assert result.points["portfolio_value"].tolist() == pytest.approx(result.points["gold_only_value"].tolist())


def test_window_limits_points_and_sets_starting_prices():
    series = _series_from_ratios([80.0, 82.0, 84.0, 86.0])
    result = simulate(series, _params(start="2020-01-02", end="2020-01-03", start_amount=5_000.0))

    assert list(result.points["date"]) == ["2020-01-02", "2020-01-03"]
    assert result.points.iloc[0]["gold_only_value"] == pytest.approx(5_000.0)
    assert result.points.iloc[0]["silver_only_value"] == pytest.approx(5_000.0)


def test_empty_series_means_nothing_to_display():
    result = simulate(pd.DataFrame(columns=["date", "gold", "silver"]), _params(up_threshold=85.0))

    assert result.empty
    assert result.switches == 0


def test_simulation_is_deterministic_and_leaves_input_untouched():
    series = _series_from_ratios([80.0, 90.0, 70.0, 55.0])
    before = series.copy()
    params = _params(up_threshold=85.0, down_threshold=60.0)

    first = simulate(series, params)
    second = simulate(series, params)

    pd.testing.assert_frame_equal(first.points, second.points)
    pd.testing.assert_frame_equal(series, before)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"start": "2020-02-01", "end": "2020-01-01"},
        {"start_asset": "platinum"},
        {"start_amount": 0.0},
        {"start_amount": float("nan")},
        {"up_threshold": float("inf")},
        {"start_amount": "abc"},
        {"start_amount": None},
        {"up_threshold": "high"},
        {"down_threshold": [60]},
    ],
)
def test_invalid_parameters_are_rejected(kwargs):
    with pytest.raises(ValidationError):
        simulate(_series_from_ratios([80.0]), _params(**kwargs))

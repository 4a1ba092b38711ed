"""
Tests for SignalEngine and the decision rule.

Expected indicator values for the conftest trends, computed by hand:

UP_TREND (20 ticks)
    sma5  = (1038 + 1032 + 1042 + 1036 + 1046) / 5 = 1038.8
    sma10 = 10330 / 10 = 1033.0
    sma20 = 20330 / 20 = 1016.5
    rsi   = 100 - 100 / (1 + 70 / 42) = 62.5

DOWN_TREND is 2000 - UP_TREND, so the averages mirror (961.2, 967.0, 983.5)
and rsi = 100 - 100 / (1 + 42 / 70) = 37.5.
"""
import math
import random

import pytest

from dcx_signal_bot.app.config import SignalsConfig
from dcx_signal_bot.app.errors import ComputationError, InvalidInput
from dcx_signal_bot.app.signal_engine import (
    HIGH_VOLATILITY_NOTE,
    INSUFFICIENT_DATA_REASONING,
    SignalEngine,
    decide,
    parse_price,
)


def feed(engine, prices, symbol="BTCUSDT"):
    signal = None
    for price in prices:
        signal = engine.ingest(symbol, price)
    return signal


# ---------------------------------------------------------------------------
# decide()
# ---------------------------------------------------------------------------


class TestDecide:

    def test_bullish_alignment_with_oversold_rsi(self):
        d = decide(3.0, 2.0, 1.0, rsi_value=25.0, volatility_value=0.0)
        assert d.direction == "buy"
        assert d.confidence == 70
        assert d.strength == 80
        assert d.reasoning == ["SMA5 > SMA10 > SMA20 (bullish trend)", "RSI at 25.0 indicates room for growth"]

    def test_bullish_alignment_plain(self):
        d = decide(3.0, 2.0, 1.0, rsi_value=55.0, volatility_value=0.0)
        assert (d.direction, d.confidence, d.strength) == ("buy", 50, 60)

    def test_bullish_alignment_blocked_by_overbought_rsi(self):
        d = decide(3.0, 2.0, 1.0, rsi_value=70.0, volatility_value=0.0)
        assert d.direction == "hold"

    def test_bearish_alignment_with_overbought_rsi(self):
        d = decide(1.0, 2.0, 3.0, rsi_value=75.0, volatility_value=0.0)
        assert (d.direction, d.confidence, d.strength) == ("sell", 70, 80)
        assert d.reasoning[1] == "RSI at 75.0 indicates potential reversal"

    def test_bearish_alignment_blocked_by_oversold_rsi(self):
        assert decide(1.0, 2.0, 3.0, rsi_value=30.0, volatility_value=0.0).direction == "hold"

    def test_equal_averages_hold(self):
        d = decide(2.0, 2.0, 2.0, rsi_value=50.0, volatility_value=0.0)
        assert (d.direction, d.confidence, d.strength) == ("hold", 50, 50)
        assert d.reasoning == ["Market conditions are neutral", "Waiting for clearer trend signals"]

    def test_volatility_dampens_confidence_only(self):
        d = decide(3.0, 2.0, 1.0, rsi_value=25.0, volatility_value=0.06)
        assert d.confidence == 55  # 70 - 15
        assert d.strength == 80
        assert d.reasoning[-1] == HIGH_VOLATILITY_NOTE

    def test_threshold_is_strict(self):
        d = decide(2.0, 2.0, 2.0, rsi_value=50.0, volatility_value=0.05)
        assert d.confidence == 50
        assert HIGH_VOLATILITY_NOTE not in d.reasoning


# ---------------------------------------------------------------------------
# Warm-up and window behaviour
# ---------------------------------------------------------------------------


class TestWarmUp:

    def test_first_nine_ticks_are_insufficient(self, engine):
        for i in range(1, 10):
            signal = engine.ingest("BTCUSDT", 100.0 * i)
            assert signal.direction == "hold"
            assert signal.strength == 30
            assert signal.confidence == 40
            assert signal.reasoning == INSUFFICIENT_DATA_REASONING

    def test_insufficient_indicators_follow_current_price(self, engine):
        engine.ingest("BTCUSDT", 100.0)
        signal = engine.ingest("BTCUSDT", 200.0)
        ind = signal.indicators
        assert ind.rsi == 50.0
        assert (ind.macd.value, ind.macd.signal, ind.macd.histogram) == (0.0, 0.0, 0.0)
        assert ind.bollinger_bands.upper == pytest.approx(204.0)
        assert ind.bollinger_bands.middle == 200.0
        assert ind.bollinger_bands.lower == pytest.approx(196.0)
        assert ind.moving_averages.sma20 == ind.moving_averages.ema26 == 200.0
        assert ind.atr == ind.volatility == 0.01

    def test_tenth_tick_is_evaluated(self, engine):
        signal = feed(engine, [100.0] * 10)
        assert signal.reasoning != INSUFFICIENT_DATA_REASONING
        assert signal.confidence == 50

    def test_window_keeps_last_twenty(self, engine):
        feed(engine, [float(i) for i in range(1, 26)])
        assert engine.history("BTCUSDT") == tuple(float(i) for i in range(6, 26))

    def test_history_of_unknown_symbol_is_empty(self, engine):
        assert engine.history("ETHUSDT") == ()


# ---------------------------------------------------------------------------
# Full evaluation
# ---------------------------------------------------------------------------


class TestEvaluation:

    def test_up_trend_buys(self, engine, up_trend):
        signal = feed(engine, up_trend)
        assert signal.direction == "buy"
        assert signal.confidence == 50
        assert signal.strength == 60
        assert signal.reasoning == (
            "SMA5 > SMA10 > SMA20 (bullish trend)",
            "RSI at 62.5 indicates room for growth",
        )

    def test_up_trend_indicators(self, engine, up_trend):
        ind = feed(engine, up_trend).indicators
        assert ind.rsi == pytest.approx(62.5)
        assert ind.moving_averages.ema12 == pytest.approx(1038.8)
        assert ind.moving_averages.ema26 == pytest.approx(1033.0)
        assert ind.moving_averages.sma20 == pytest.approx(1016.5)
        assert ind.moving_averages.sma50 == ind.moving_averages.sma20
        assert ind.macd.value == pytest.approx(5.8)
        assert ind.macd.signal == pytest.approx(16.5)
        assert ind.macd.histogram == pytest.approx(-10.7)
        assert ind.bollinger_bands.upper == pytest.approx(1016.5 * 1.05)
        assert ind.bollinger_bands.lower == pytest.approx(1016.5 * 0.95)
        assert ind.atr == ind.volatility
        assert ind.volatility < 0.05

    def test_down_trend_sells(self, engine, down_trend):
        signal = feed(engine, down_trend)
        assert signal.direction == "sell"
        assert (signal.confidence, signal.strength) == (50, 60)
        assert signal.reasoning[1] == "RSI at 37.5 indicates potential reversal"
        assert signal.indicators.moving_averages.ema12 == pytest.approx(961.2)

    def test_steady_rise_is_overbought(self, engine):
        # 1..10: sma10 == sma20 == 5.5 and every delta is a gain.
        signal = feed(engine, [float(i) for i in range(1, 11)])
        assert signal.indicators.rsi == 100.0
        assert signal.direction == "hold"
        assert signal.confidence == 35  # returns of 100%, 50%, ... are volatile
        assert signal.strength == 50
        assert signal.reasoning[-1] == HIGH_VOLATILITY_NOTE

    def test_steady_fall_is_oversold(self, engine):
        signal = feed(engine, [float(i) for i in range(10, 0, -1)])
        assert signal.indicators.rsi == pytest.approx(0.0)
        assert signal.direction == "hold"

    def test_volatility_dampening_matches_undampened_rule(self, engine):
        prices = [100.0]
        for i in range(19):
            prices.append(prices[-1] * (1.1 if i % 2 == 0 else 0.9))
        signal = feed(engine, prices)
        ind = signal.indicators
        assert ind.volatility == pytest.approx(0.1, rel=1e-2)

        baseline = decide(
            ind.moving_averages.ema12, ind.moving_averages.ema26, ind.moving_averages.sma20, ind.rsi, 0.0
        )
        assert signal.direction == baseline.direction
        assert signal.confidence == max(20, baseline.confidence - 15)
        assert signal.strength == baseline.strength
        assert signal.reasoning[-1] == HIGH_VOLATILITY_NOTE

    def test_bounds_hold_over_random_walk(self, engine):
        rng = random.Random(7)
        price = 100.0
        for _ in range(300):
            price *= rng.uniform(0.8, 1.25)
            signal = engine.ingest("BTCUSDT", price)
            assert 20 <= signal.confidence <= 85
            assert 20 <= signal.strength <= 90
            assert 0.0 <= signal.indicators.rsi <= 100.0
            assert signal.direction in ("buy", "sell", "hold")

    def test_same_input_same_output(self, up_trend):
        with SignalEngine() as a, SignalEngine() as b:
            first = feed(a, up_trend).to_dict()
            second = feed(b, up_trend).to_dict()
        first.pop("timestamp")
        second.pop("timestamp")
        assert first == second

    def test_to_dict_shape(self, engine, up_trend):
        data = feed(engine, up_trend).to_dict()
        assert set(data) == {"symbol", "direction", "strength", "confidence", "indicators", "reasoning", "timestamp"}
        assert set(data["indicators"]) == {"rsi", "macd", "bollingerBands", "movingAverages", "atr", "volatility"}
        assert isinstance(data["reasoning"], list)
        assert isinstance(data["timestamp"], int)


# ---------------------------------------------------------------------------
# Input validation and numeric failures
# ---------------------------------------------------------------------------


class TestValidation:

    @pytest.mark.parametrize("price", [math.nan, math.inf, -math.inf, -1.0, True, "100", None])
    def test_rejects_bad_price_without_touching_history(self, engine, price):
        engine.ingest("BTCUSDT", 100.0)
        with pytest.raises(InvalidInput):
            engine.ingest("BTCUSDT", price)
        assert engine.history("BTCUSDT") == (100.0,)

    @pytest.mark.parametrize("symbol", ["", "   ", None, 42])
    def test_rejects_bad_symbol(self, engine, symbol):
        with pytest.raises(InvalidInput):
            engine.ingest(symbol, 100.0)

    def test_zero_price_is_accepted(self, engine):
        signal = feed(engine, [0.0] * 10)
        assert signal.indicators.volatility == 0.0

    def test_integer_price_is_accepted(self, engine):
        assert engine.ingest("BTCUSDT", 100).indicators.bollinger_bands.middle == 100.0

    def test_invalid_input_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_price("abc")

    def test_parse_price_accepts_numeric_strings(self):
        assert parse_price(" 42.5 ") == 42.5

    def test_overflowing_band_raises(self, engine):
        with pytest.raises(ComputationError):
            engine.ingest("BTCUSDT", 1.7e308)
        assert engine.history("BTCUSDT") == ()

    def test_overflowing_average_raises(self):
        with SignalEngine(min_history=2) as eng:
            eng.ingest("BTCUSDT", 1e308)
            with pytest.raises(ComputationError):
                eng.ingest("BTCUSDT", 1e308)
            assert eng.history("BTCUSDT") == (1e308,)

    def test_huge_finite_price_is_evaluated(self, engine):
        # returns are eight 0.0 and one ~1e198 → pstdev = 1e198 * sqrt(8) / 9 ≈ 3.14e197
        signal = feed(engine, [100.0] * 9 + [1e200])
        assert math.isfinite(signal.indicators.volatility)
        assert signal.indicators.volatility == pytest.approx(1e198 * math.sqrt(8) / 9)
        assert signal.direction == "hold"
        assert signal.confidence == 35
        assert engine.ingest("BTCUSDT", 100.0).direction in ("buy", "sell", "hold")

    def test_failed_tick_leaves_full_window_untouched(self):
        # [1, 1e308, 1] + 1e308 would evict the leading 1.0 and overflow the average.
        with SignalEngine(history_capacity=3, min_history=2) as eng:
            feed(eng, [1.0, 1e308, 1.0])
            with pytest.raises(ComputationError):
                eng.ingest("BTCUSDT", 1e308)
            assert eng.history("BTCUSDT") == (1.0, 1e308, 1.0)

            eng.ingest("BTCUSDT", 2.0)
            assert eng.history("BTCUSDT") == (1e308, 1.0, 2.0)

    def test_constructor_rejects_bad_sizes(self):
        with pytest.raises(ValueError):
            SignalEngine(history_capacity=1)
        with pytest.raises(ValueError):
            SignalEngine(history_capacity=5, min_history=10)
        with pytest.raises(ValueError):
            SignalEngine(rsi_period=0)


# ---------------------------------------------------------------------------
# Windows per symbol, lifecycle
# ---------------------------------------------------------------------------


class TestWindowsAndLifecycle:

    def test_symbols_are_partitioned_by_default(self, engine):
        feed(engine, [100.0] * 9, symbol="BTCUSDT")
        signal = engine.ingest("ETHUSDT", 3000.0)
        assert signal.reasoning == INSUFFICIENT_DATA_REASONING
        assert engine.history("ETHUSDT") == (3000.0,)
        assert engine.symbols() == ["BTCUSDT", "ETHUSDT"]

    def test_shared_window_mixes_symbols(self):
        with SignalEngine(partition_by_symbol=False) as eng:
            feed(eng, [100.0] * 9, symbol="BTCUSDT")
            signal = eng.ingest("ETHUSDT", 3000.0)
            assert signal.reasoning != INSUFFICIENT_DATA_REASONING
            assert signal.symbol == "ETHUSDT"
            assert len(eng.history("BTCUSDT")) == 10
            assert eng.history("BTCUSDT") == eng.history("ETHUSDT")

    def test_from_config(self):
        cfg = SignalsConfig(history_capacity=30, min_history=5, partition_by_symbol=False)
        with SignalEngine.from_config(cfg) as eng:
            assert eng.history_capacity == 30
            assert eng.min_history == 5
            assert eng.partition_by_symbol is False

    def test_reset_single_symbol(self, engine):
        engine.ingest("BTCUSDT", 1.0)
        engine.ingest("ETHUSDT", 2.0)
        engine.reset("BTCUSDT")
        assert engine.history("BTCUSDT") == ()
        assert engine.history("ETHUSDT") == (2.0,)

    def test_reset_all(self, engine):
        engine.ingest("BTCUSDT", 1.0)
        engine.ingest("ETHUSDT", 2.0)
        engine.reset()
        assert engine.history("BTCUSDT") == ()
        assert engine.history("ETHUSDT") == ()

    def test_closed_engine_rejects_ticks(self):
        eng = SignalEngine()
        with eng:
            eng.ingest("BTCUSDT", 1.0)
        assert eng.closed
        assert eng.history("BTCUSDT") == ()
        with pytest.raises(RuntimeError):
            eng.ingest("BTCUSDT", 1.0)

    def test_debug_logging_uses_injected_logger(self):
        calls = []

        class _Recorder:
            def debug(self, message, *args):
                calls.append(message.format(*args))

        with SignalEngine(logger=_Recorder()) as eng:
            eng.ingest("BTCUSDT", 1.0)
        assert calls and "direction=hold" in calls[0]

"""
Shared fixtures.

UP_TREND / DOWN_TREND are 20-tick zigzags (+10/-6 and -10/+6) chosen so the
moving averages are strictly ordered, RSI lands at 62.5 / 37.5 and return
volatility stays near 1%, well under the dampening threshold.
"""

import pytest

from dcx_signal_bot.app.signal_engine import SignalEngine

UP_TREND = [
    1000.0, 1010.0, 1004.0, 1014.0, 1008.0, 1018.0, 1012.0, 1022.0, 1016.0, 1026.0,
    1020.0, 1030.0, 1024.0, 1034.0, 1028.0, 1038.0, 1032.0, 1042.0, 1036.0, 1046.0,
]
DOWN_TREND = [2000.0 - p for p in UP_TREND]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    for name in ("COINDCX_API_KEY", "COINDCX_SECRET", "USE_MOCK_DATA", "DCX_SIGNAL_BOT_CONFIG"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def engine():
    with SignalEngine() as eng:
        yield eng


@pytest.fixture
def up_trend():
    return list(UP_TREND)


@pytest.fixture
def down_trend():
    return list(DOWN_TREND)

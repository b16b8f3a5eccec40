from __future__ import annotations

from chart_sentinel.alerts import AlertEngine
from chart_sentinel.indicators import compute
from chart_sentinel.models import Candle, TradeSignal


def candle(idx: int, close: float) -> Candle:
    return Candle(time=idx * 3600, open=close, high=close + 1, low=close - 1, close=close)


def run_case(name: str, signal: TradeSignal, prices):
    eng = AlertEngine(signal)
    fired = []
    for p in prices:
        fired.extend(eng.on_price(p))
    print(f"{name}: alerts={len(fired)}", [(a.type.value, a.level, a.price) for a in fired])


def main():
    closes = [100 + (i % 5) - (i % 3) for i in range(30)]
    rsi = compute("RSI", [candle(i, c) for i, c in enumerate(closes)])
    print("RSI(14) offset =", rsi.offset, "values =", len(rsi), "last =", round(rsi.values[-1], 2))

    plan = TradeSignal(entry_price_range="100-110", take_profit_levels=("120", "130"), stop_loss="$90.50")

    # Case 1: entry, stop, first target
    run_case("walkthrough", plan, [105, 91, 90, 125])

    # Case 2: exits ignored until the entry range is reached
    run_case("not_armed", plan, [80, 150, 140])

    # Case 3: gap through both targets on one tick
    run_case("gap_up", plan, [101, 135, 140])


if __name__ == "__main__":
    main()

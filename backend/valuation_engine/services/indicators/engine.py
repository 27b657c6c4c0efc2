# backend/valuation_engine/services/indicators/engine.py
"""
Indicator Engine: stateless computation over an ordered price series.

The engine turns a list of PricePoints (ascending, one per date) into one
IndicatorRow per point. It never touches the database; persistence and
the full-vs-incremental decision live in IndicatorService.

Resuming:
    compute() accepts the RecurrenceState returned by a previous call and
    the closes that preceded the new points (for the moving-average
    windows). Given the same prefix, a resumed run yields values that are
    bit-identical to a single pass over the whole series.
"""

import logging
from collections import deque
from collections.abc import Sequence

from valuation_engine.services.constants import MA_LONG_WINDOW, MA_SHORT_WINDOW
from valuation_engine.services.indicators.calculators import mean
from valuation_engine.services.indicators.types import (
    IndicatorRow,
    PricePoint,
    RecurrenceState,
)

logger = logging.getLogger(__name__)


class IndicatorEngine:
    """
    Computes MA50/MA200, MACD (12/26/9) and RSI (9/14/21).

    Moving averages are taken over the trailing available bars, not
    calendar days: a gap in the series shifts the window and nothing is
    forward-filled.
    """

    def compute(
            self,
            points: Sequence[PricePoint],
            state: RecurrenceState | None = None,
            history: Sequence[float] = (),
            price_field: str = "close",
    ) -> tuple[list[IndicatorRow], RecurrenceState]:
        """
        Compute indicator rows for the given points.

        Args:
            points: New points, ascending by date, unique dates
            state: Accumulators after the last previously processed point.
                None starts from scratch.
            history: Prices immediately preceding points (oldest first).
                Only the last MA_LONG_WINDOW - 1 are used.
            price_field: Bar field the prices were read from

        Returns:
            (rows, state after the last point)

        Raises:
            ValueError: If points are not strictly ascending by date, or
                the state was built from a different price field
        """
        for prev, cur in zip(points, points[1:]):
            if cur.date <= prev.date:
                raise ValueError(f"points must be strictly ascending by date: {prev.date} then {cur.date}")

        if state is None:
            state = RecurrenceState(price_field=price_field)
        elif state.price_field != price_field:
            raise ValueError(
                f"cannot resume a state built from '{state.price_field}' with '{price_field}' prices"
            )

        window: deque[float] = deque(history, maxlen=MA_LONG_WINDOW)
        rows: list[IndicatorRow] = []

        for point in points:
            price = point.price
            window.append(price)

            fast = state.fast.update(price)
            slow = state.slow.update(price)
            histogram = None
            signal = None
            if fast is not None and slow is not None:
                histogram = fast - slow
                signal = state.signal.update(histogram)

            rsi = {period: wilder.update(price) for period, wilder in state.rsi.items()}

            rows.append(
                IndicatorRow(
                    date=point.date,
                    source_bar_id=point.bar_id,
                    ma50=self._window_mean(window, MA_SHORT_WINDOW),
                    ma200=self._window_mean(window, MA_LONG_WINDOW),
                    fast_ema=fast,
                    slow_ema=slow,
                    histogram=histogram,
                    signal=signal,
                    rsi_9=rsi.get(9),
                    rsi_14=rsi.get(14),
                    rsi_21=rsi.get(21),
                )
            )

        logger.debug(f"Computed {len(rows)} indicator rows ({len(history)} history prices)")
        return rows, state

    @staticmethod
    def _window_mean(window: deque[float], size: int) -> float | None:
        if len(window) < size:
            return None
        return mean(list(window)[-size:])

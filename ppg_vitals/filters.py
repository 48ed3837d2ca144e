"""
Streaming smoothing filters.

Two stages run on every accepted red sample:

1. :class:`KalmanFilter` – a single-state recursive estimator that removes
   sensor noise frame by frame in O(1).
2. :class:`SavitzkyGolayFilter` – a short FIR smoother whose polynomial fit
   keeps the shape of the pulse peak intact.

Both reject NaN / infinite input before touching their state, so one bad
frame cannot poison the estimate for the rest of the session.
"""

from __future__ import annotations

import math
from collections import deque
from typing import Deque

import numpy as np
from scipy.signal import savgol_coeffs

from ppg_vitals.errors import NonFiniteInputError


def _check_finite(value: float, name: str) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise NonFiniteInputError(f"{name} received non-finite input {value!r}")
    return value


class KalmanFilter:
    """
    Scalar Kalman filter with constant process and measurement variance.

    Parameters
    ----------
    process_variance:
        Q, how much the true value is expected to drift per step.
    measurement_variance:
        R, the variance of the measurement noise.
    """

    def __init__(self, process_variance: float = 0.1, measurement_variance: float = 0.01) -> None:
        self.q = process_variance
        self.r = measurement_variance
        self.x = 0.0
        self.p = 1.0

    def update(self, measurement: float) -> float:
        """Fold *measurement* into the estimate and return the new estimate."""
        z = _check_finite(measurement, "KalmanFilter")
        self.p += self.q
        k = self.p / (self.p + self.r)
        self.x += k * (z - self.x)
        self.p *= 1.0 - k
        return self.x

    def reset(self) -> None:
        self.x = 0.0
        self.p = 1.0


class SavitzkyGolayFilter:
    """
    Causal Savitzky–Golay smoother over a sliding window.

    The output is the least-squares polynomial fit evaluated at the window
    centre.  Until *window_length* samples have been seen the raw input is
    passed through unchanged.

    Parameters
    ----------
    window_length:
        Number of taps (odd).  Default: 9.
    polyorder:
        Order of the fitted polynomial.  Default: 2.
    """

    def __init__(self, window_length: int = 9, polyorder: int = 2) -> None:
        if window_length % 2 == 0 or window_length <= polyorder:
            raise ValueError("window_length must be odd and greater than polyorder")
        self.window_length = window_length
        self.polyorder = polyorder
        coeffs = savgol_coeffs(window_length, polyorder, use="dot")
        self._coeffs: np.ndarray = coeffs / coeffs.sum()
        self._window: Deque[float] = deque(maxlen=window_length)

    @property
    def coefficients(self) -> np.ndarray:
        return self._coeffs.copy()

    @property
    def is_warm(self) -> bool:
        return len(self._window) == self.window_length

    def filter(self, value: float) -> float:
        value = _check_finite(value, "SavitzkyGolayFilter")
        self._window.append(value)
        if not self.is_warm:
            return value
        return float(np.dot(self._coeffs, np.fromiter(self._window, dtype=np.float64)))

    def reset(self) -> None:
        self._window.clear()

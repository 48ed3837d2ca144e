"""
Heart-rate-variability metrics over a series of RR intervals (ms).

All functions are pure and vectorised; they return 0 for series too short
to define the metric.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.integrate import trapezoid
from scipy.signal import welch

LF_BAND = (0.04, 0.15)   # Hz
HF_BAND = (0.15, 0.40)   # Hz
RESAMPLE_HZ = 4.0


@dataclass(frozen=True)
class HRVMetrics:
    mean_rr:        float
    rmssd:          float
    sdnn:           float
    pnn50:          float
    shannon:        float
    sample_entropy: float
    lf_hf_ratio:    float


def _as_array(rr) -> np.ndarray:
    return np.asarray(rr, dtype=np.float64)


def rmssd(rr) -> float:
    """Root mean square of successive differences."""
    x = _as_array(rr)
    if x.size < 2:
        return 0.0
    return float(np.sqrt(np.mean(np.diff(x) ** 2)))


def sdnn(rr) -> float:
    """Population standard deviation of the RR series."""
    x = _as_array(rr)
    if x.size < 2:
        return 0.0
    return float(np.std(x))


def pnn50(rr) -> float:
    """Fraction (0 – 1) of successive differences larger than 50 ms."""
    x = _as_array(rr)
    if x.size < 2:
        return 0.0
    return float(np.count_nonzero(np.abs(np.diff(x)) > 50.0) / (x.size - 1))


def shannon_entropy(rr, bin_ms: float = 20.0) -> float:
    """Shannon entropy (bits) of the RR values quantised into *bin_ms* classes."""
    x = _as_array(rr)
    if x.size == 0:
        return 0.0
    _, counts = np.unique(np.floor(x / bin_ms), return_counts=True)
    p = counts / counts.sum()
    return float(-np.sum(p * np.log2(p)))


def sample_entropy(rr, m: int = 2, r_factor: float = 0.2) -> float:
    """
    Sample entropy with tolerance ``r = r_factor · SD`` and Chebyshev distance.

    A perfectly regular series (SD = 0) returns 0.  When no template of
    length ``m + 1`` matches, the conventional upper bound
    ``−ln(2 / ((N − m − 1)(N − m)))`` is returned.
    """
    x = _as_array(rr)
    n = x.size
    if n <= m + 1:
        return 0.0
    r = r_factor * float(np.std(x))
    if r == 0.0:
        return 0.0

    def matches(length: int) -> int:
        templates = np.lib.stride_tricks.sliding_window_view(x[: n - m + length - 1], length)
        dist = np.max(np.abs(templates[:, None, :] - templates[None, :, :]), axis=2)
        return int((np.count_nonzero(dist <= r) - templates.shape[0]) // 2)

    b = matches(m)
    a = matches(m + 1)
    if b == 0:
        return 0.0
    if a == 0:
        return float(-np.log(2.0 / ((n - m - 1) * (n - m))))
    return float(-np.log(a / b))


def _band_power(freqs: np.ndarray, power: np.ndarray, band) -> float:
    mask = (freqs >= band[0]) & (freqs < band[1])
    if np.count_nonzero(mask) < 2:
        return 0.0
    return float(trapezoid(power[mask], freqs[mask]))


def lf_hf_ratio(rr) -> float:
    """
    LF/HF power ratio of the RR tachogram.

    The series is resampled at 4 Hz on its cumulative time axis and its
    Welch spectrum integrated over the LF (0.04 – 0.15 Hz) and HF
    (0.15 – 0.40 Hz) bands.  Returns 1.0 when HF power is zero or the
    series is too short.
    """
    x = _as_array(rr)
    if x.size < 4:
        return 1.0
    t = np.cumsum(x) / 1000.0
    grid = np.arange(t[0], t[-1], 1.0 / RESAMPLE_HZ)
    if grid.size < 8:
        return 1.0
    tachogram = np.interp(grid, t, x)
    freqs, power = welch(tachogram - tachogram.mean(), fs=RESAMPLE_HZ, nperseg=min(256, grid.size))
    hf = _band_power(freqs, power, HF_BAND)
    if hf <= 0.0:
        return 1.0
    return _band_power(freqs, power, LF_BAND) / hf


def compute_metrics(rr, bin_ms: float = 20.0) -> HRVMetrics:
    x = _as_array(rr)
    return HRVMetrics(
        mean_rr=float(x.mean()) if x.size else 0.0,
        rmssd=rmssd(x),
        sdnn=sdnn(x),
        pnn50=pnn50(x),
        shannon=shannon_entropy(x, bin_ms),
        sample_entropy=sample_entropy(x),
        lf_hf_ratio=lf_hf_ratio(x),
    )

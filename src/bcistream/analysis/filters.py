"""Filter design and causal block-filtering helpers."""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import ArrayLike
from scipy import signal


def butter_design(
    sample_rate_hz: float,
    low_hz: Optional[float] = None,
    high_hz: Optional[float] = None,
    order: int = 4,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Design a Butterworth filter and return ``(b, a)``.

    Parameters
    ----------
    sample_rate_hz:
        Sampling rate in Hz. Must be > 0.
    low_hz:
        Lower edge in Hz; ``None`` designs a low-pass.
    high_hz:
        Upper edge in Hz; ``None`` designs a high-pass.
    order:
        Filter order (default: 4).
    """
    if sample_rate_hz <= 0:
        raise ValueError(f"sample_rate_hz must be > 0, got {sample_rate_hz}")
    if low_hz is None and high_hz is None:
        raise ValueError("at least one of low_hz/high_hz must be given")

    nyquist = 0.5 * float(sample_rate_hz)
    for name, edge in (("low_hz", low_hz), ("high_hz", high_hz)):
        if edge is None:
            continue
        if edge <= 0:
            raise ValueError(f"{name} must be > 0, got {edge}")
        if edge >= nyquist:
            raise ValueError(f"{name} must be < Nyquist ({nyquist:.3f} Hz), got {edge}")

    if low_hz is not None and high_hz is not None:
        if low_hz >= high_hz:
            raise ValueError(f"low_hz ({low_hz}) must be below high_hz ({high_hz})")
        b, a = signal.butter(order, [low_hz / nyquist, high_hz / nyquist], btype="bandpass")
    elif low_hz is not None:
        b, a = signal.butter(order, low_hz / nyquist, btype="highpass")
    else:
        b, a = signal.butter(order, high_hz / nyquist, btype="lowpass")
    return np.asarray(b, dtype=float), np.asarray(a, dtype=float)


def initial_conditions(b: ArrayLike, a: ArrayLike, first_samples: ArrayLike) -> np.ndarray:
    """
    Steady-state ``zi`` for every channel, scaled to its first sample.

    Returns an array of shape ``(channels, order)`` suitable for
    :func:`causal_filter`.
    """
    zi = signal.lfilter_zi(np.asarray(b, dtype=float), np.asarray(a, dtype=float))
    first = np.asarray(first_samples, dtype=float).reshape(-1, 1)
    return first * zi[np.newaxis, :]


def causal_filter(
    b: ArrayLike,
    a: ArrayLike,
    data: ArrayLike,
    zi: Optional[np.ndarray] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Filter ``channels x samples`` data along time, carrying ``zi`` across calls.

    When ``zi`` is ``None`` the filter starts in steady state for the first
    sample of each channel. Returns ``(filtered, zf)``.
    """
    data_arr = np.asarray(data, dtype=float)
    if data_arr.ndim != 2:
        raise ValueError(f"data must be 2-D (channels x samples), got shape {data_arr.shape}")
    if data_arr.shape[1] == 0:
        return data_arr.copy(), zi
    if zi is None:
        zi = initial_conditions(b, a, data_arr[:, 0])
    filtered, zf = signal.lfilter(b, a, data_arr, axis=1, zi=zi)
    return filtered, zf

from contextlib import contextmanager
import time

from loguru import logger as log
import numpy as np


def db_to_linear(gain_db: float) -> float:
    """Convert a gain in decibels to the linear amplitude factor 10^(dB/20)."""
    return float(10.0 ** (gain_db / 20.0))


def mix_to_mono(samples: np.ndarray, channels: int) -> np.ndarray:
    """
    Average interleaved or (frames, channels) samples down to a mono signal.

    Parameters
    ----------
    samples : np.ndarray
        Either a 2-D (frames, channels) block as delivered by sounddevice, or
        a flat interleaved buffer.
    channels : int
        Channel count of the stream the samples came from.

    Returns
    -------
    mono : np.ndarray
        1-D float32 array with one value per sample frame.
    """
    samples = np.asarray(samples, dtype=np.float32)
    if channels <= 1:
        return samples.reshape(-1).copy()

    if samples.ndim == 1:
        usable = (samples.shape[0] // channels) * channels
        samples = samples[:usable].reshape(-1, channels)
    return samples.mean(axis=1)


@contextmanager
def timed(label: str):
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        log.debug(f"{label} took {elapsed:,.2f} s")

from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

BLURPLE_BGR = (242, 101, 88)


@dataclass(frozen=True)
class OverlayStyle:
    """Where and how the webcam picture sits on the preview (pixels, BGR)."""
    position: Tuple[int, int] = (40, 40)
    size: Tuple[int, int] = (320, 180)
    opacity: float = 0.9
    border_color: Tuple[int, int, int] = BLURPLE_BGR
    border_width: int = 2


def _as_bgr(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    if img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
    return img


def _fill_clipped(img: np.ndarray, x0: int, y0: int, x1: int, y1: int,
                  color: Tuple[int, int, int]) -> None:
    H, W = img.shape[:2]
    x0, y0 = max(x0, 0), max(y0, 0)
    x1, y1 = min(x1, W), min(y1, H)
    if x0 < x1 and y0 < y1:
        img[y0:y1, x0:x1] = color


def compose_overlay(primary: np.ndarray, secondary: np.ndarray,
                    style: OverlayStyle = OverlayStyle()) -> np.ndarray:
    """
    Blend ``secondary`` (webcam) onto a copy of ``primary`` (display) for the
    live preview.

    Parameters
    ----------
    primary : np.ndarray
        Display frame, (H, W), (H, W, 3) or (H, W, 4) uint8.
    secondary : np.ndarray
        Webcam frame; resized to ``style.size``. A 4-channel frame contributes
        its own alpha on top of ``style.opacity``.
    style : OverlayStyle
        Position, size, opacity and border of the inset.

    Returns
    -------
    composed : np.ndarray
        New (H, W, 3) uint8 BGR image; ``primary`` is left untouched. Parts of
        the inset that fall outside the primary frame are clipped.
    """
    out = _as_bgr(primary).astype(np.uint8, copy=True)
    w, h = style.size
    x, y = style.position
    if w <= 0 or h <= 0:
        return out

    src_h, src_w = secondary.shape[:2]
    if (src_w, src_h) != (w, h):
        interp = cv2.INTER_AREA if src_w * src_h > w * h else cv2.INTER_LINEAR
        secondary = cv2.resize(secondary, (w, h), interpolation=interp)

    opacity = float(np.clip(style.opacity, 0.0, 1.0))
    if secondary.ndim == 3 and secondary.shape[2] == 4:
        alpha = secondary[..., 3:4].astype(np.float32) / 255.0 * opacity
    else:
        alpha = np.full((h, w, 1), opacity, dtype=np.float32)
    inset = _as_bgr(secondary).astype(np.float32)

    H, W = out.shape[:2]
    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + w, W), min(y + h, H)
    if x0 >= x1 or y0 >= y1:
        return out

    region = out[y0:y1, x0:x1].astype(np.float32)
    patch = inset[y0 - y:y1 - y, x0 - x:x1 - x]
    a = alpha[y0 - y:y1 - y, x0 - x:x1 - x]
    out[y0:y1, x0:x1] = np.clip(patch * a + region * (1.0 - a), 0, 255).astype(np.uint8)

    bw = style.border_width
    if bw > 0:
        color = style.border_color
        _fill_clipped(out, x, y, x + w, y + bw, color)
        _fill_clipped(out, x, y + h - bw, x + w, y + h, color)
        _fill_clipped(out, x, y, x + bw, y + h, color)
        _fill_clipped(out, x + w - bw, y, x + w, y + h, color)
    return out

"""Fit-inside resize geometry."""
import logging
from typing import Optional, Tuple

logger = logging.getLogger("webpify.resize")


def fit_inside(
    size: Tuple[int, int],
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
) -> Tuple[int, int]:
    """
    Size that fits within target width and/or height, keeping the aspect ratio.
    If only one dimension is set, the other follows from the image ratio.
    Never larger than the source: an image already inside the box keeps its size.
    """
    w, h = size
    if target_width is None and target_height is None:
        return w, h
    if target_width is not None and target_height is not None:
        scale = min(target_width / w, target_height / h)
    elif target_width is not None:
        scale = target_width / w
    else:
        scale = target_height / h
    if scale >= 1:
        return w, h
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    # Rounding must not push past the box.
    if target_width is not None:
        new_w = min(new_w, target_width)
    if target_height is not None:
        new_h = min(new_h, target_height)
    logger.debug("Fit %sx%s inside %sx%s -> %sx%s", w, h, target_width, target_height, new_w, new_h)
    return new_w, new_h

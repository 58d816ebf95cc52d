"""In-memory frame grabbing for the foreground window."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

try:  # pragma: no cover - optional dependency
    import mss  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    mss = None  # type: ignore

try:  # pragma: no cover - optional dependency
    from PIL import Image, ImageGrab  # type: ignore
except (ModuleNotFoundError, ImportError):  # pragma: no cover - optional dependency
    Image = None  # type: ignore
    ImageGrab = None  # type: ignore

Rect = Tuple[int, int, int, int]
GrabBackend = Callable[[Optional[Rect]], "Image.Image"]


class FrameGrabber:
    """Captures a window rectangle (or the whole monitor) as a Pillow image.

    ``mss`` is preferred; Pillow's ``ImageGrab`` is the fallback. A rectangle
    with no area means the window bounds are unknown, so the primary monitor
    is captured instead.
    """

    def __init__(self, *, monitor_index: int = 1) -> None:
        self.monitor_index = monitor_index
        self._backend: Optional[GrabBackend] = self._select_backend()

    @property
    def available(self) -> bool:
        return self._backend is not None

    def grab(self, rect: Rect | None = None):
        if self._backend is None:
            logger.warning("Screen capture backend is not available.")
            return None
        bbox = rect if rect and rect[2] > rect[0] and rect[3] > rect[1] else None
        return self._backend(bbox)

    __call__ = grab

    # ------------------------------------------------------------------
    # Backend selection helpers
    # ------------------------------------------------------------------

    def _select_backend(self) -> Optional[GrabBackend]:
        if mss is not None and Image is not None:
            return self._grab_with_mss
        if ImageGrab is not None:
            return self._grab_with_pillow
        return None

    def _grab_with_mss(self, bbox: Rect | None):
        assert mss is not None and Image is not None  # for type checkers
        with mss.mss() as sct:
            if bbox is None:
                monitors = sct.monitors
                region = monitors[min(max(self.monitor_index, 1), len(monitors) - 1)]
            else:
                left, top, right, bottom = bbox
                region = {"left": left, "top": top, "width": right - left, "height": bottom - top}
            shot = sct.grab(region)
            return Image.frombytes("RGB", shot.size, shot.rgb)

    def _grab_with_pillow(self, bbox: Rect | None):
        assert ImageGrab is not None  # for type checkers
        return ImageGrab.grab(bbox=bbox)  # type: ignore[attr-defined]

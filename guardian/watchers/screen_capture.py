import time
from typing import cast

import mss  # pyright: ignore[reportMissingImports]
import mss.exception  # pyright: ignore[reportMissingImports]
import pytesseract  # pyright: ignore[reportMissingImports]
from PIL import Image  # pyright: ignore[reportMissingImports]

from guardian.model.models import ProbeResult
from guardian.watchers.logger import logger


class ScreenCapture:
    """スクリーンキャプチャを取得するクラス."""

    def __init__(self, bbox: dict[str, int] | None = None) -> None:
        """初期化する

        Args:
        bbox: キャプチャ領域 {"top": int, "left": int, "width": int, "height": int}
             Noneの場合はプライマリモニター全体（初回キャプチャ時に解決）

        """
        self.bbox = bbox
        self.last_capture_time: float = 0.0

    def _get_primary_monitor_bbox(self, sct: "mss.base.MSSBase") -> dict[str, int]:
        """プライマリモニターの実際の解像度を取得"""
        monitors = sct.monitors
        chosen = cast(
            "dict[str, int]",
            monitors[1] if len(monitors) > 1 else monitors[0],
        )
        logger.info("Monitors detected: %s | chosen=%s", len(monitors) - 1, chosen)
        return chosen

    def grab(self) -> Image.Image:
        """スクリーンショットを PIL Image で返す"""
        with mss.mss() as sct:
            if self.bbox is None:
                self.bbox = self._get_primary_monitor_bbox(sct)
            screenshot = sct.grab(self.bbox)
            image = Image.frombytes("RGB", screenshot.size, screenshot.bgra, "raw", "BGRX")
        self.last_capture_time = time.time()
        return image


class ScreenTextProbe:
    """画面キャプチャ + Tesseract OCR で画面上のテキストを読む.

    画面収録の権限が無い・Tesseract が無い場合は available=False を返す.
    """

    def __init__(self, capture: ScreenCapture | None = None, lang: str = "eng") -> None:
        self.capture = capture or ScreenCapture()
        self.lang = lang

    def read_text(self) -> ProbeResult[str]:
        try:
            image = self.capture.grab()
        except mss.exception.ScreenShotError as e:
            logger.warning("Screen capture failed: %s", e)
            return ProbeResult("", False)

        try:
            text = pytesseract.image_to_string(image, lang=self.lang)
        except pytesseract.TesseractNotFoundError:
            logger.warning("Tesseract is not installed; OCR disabled for this poll")
            return ProbeResult("", False)
        except (pytesseract.TesseractError, OSError) as e:
            logger.warning("OCR failed: %s", e)
            return ProbeResult("", False)
        return ProbeResult(text, True)

import hashlib
import re
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Protocol

from guardian.model.models import ContextSnapshot, ProbeResult, TopicCategory, WindowInfo
from guardian.watchers.catalog import DomainCatalog
from guardian.watchers.logger import logger
from guardian.watchers.normalizer import normalize_title, normalize_url

OCR_INTERVAL = 6.0
OCR_MAX_CHARS = 12_000

_OCR_SPACES_RE = re.compile(r"[ \t]{2,}")
_OCR_NEWLINES_RE = re.compile(r"\n{3,}")


class WindowProbe(Protocol):
    def read(self) -> ProbeResult[WindowInfo]: ...


class URLProbe(Protocol):
    def is_browser(self, bundle_id: str) -> bool: ...

    def fetch(self, bundle_id: str) -> ProbeResult[str]: ...


class TextProbe(Protocol):
    def read_text(self) -> ProbeResult[str]: ...


SnapshotCallback = Callable[[ContextSnapshot], None]


def normalize_ocr(text: str, max_chars: int = OCR_MAX_CHARS) -> str:
    """OCR結果の空白を整理して長さを制限する."""
    if not text:
        return ""
    squished = text.replace("\r", "\n")
    squished = _OCR_SPACES_RE.sub(" ", squished)
    squished = _OCR_NEWLINES_RE.sub("\n\n", squished).strip()
    return squished[:max_chars]


def make_snapshot(
    seq: int,
    timestamp: float,
    window: WindowInfo,
    url: str,
    catalog: DomainCatalog,
    ocr_text: str | None = None,
) -> ContextSnapshot:
    """生のシグナルを正規化して ContextSnapshot を作る."""
    parsed = normalize_url(url)
    if parsed is None:
        host = path = path_short = display = ""
        category = TopicCategory.OTHER
    else:
        host, path, path_short, display = parsed.host, parsed.path, parsed.path_short, parsed.display
        category = catalog.category(parsed.host, parsed.path)

    return ContextSnapshot(
        seq=seq,
        timestamp=timestamp,
        app_name=window.app_name,
        bundle_id=window.bundle_id,
        window_title=window.title,
        window_title_clean=normalize_title(window.app_name, window.bundle_id, window.title),
        browser_url=url if parsed is not None else "",
        url_host=host,
        url_path=path,
        url_path_short=path_short,
        url_display=display,
        category=category,
        ocr_text=ocr_text,
    )


class ContextSampler:
    """一定間隔で前面コンテキストを取得し ContextSnapshot を配信するクラス"""

    def __init__(
        self,
        window_probe: WindowProbe,
        url_probe: URLProbe,
        ocr_probe: TextProbe | None = None,
        catalog: DomainCatalog | None = None,
        interval: float = 1.0,
        on_snapshot: SnapshotCallback | None = None,
        *,
        ocr_interval: float = OCR_INTERVAL,
        executor: ThreadPoolExecutor | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            window_probe: 前面ウィンドウのプローブ
            url_probe: ブラウザURLのプローブ（ワーカースレッドで実行）
            ocr_probe: 画面テキストのプローブ（省略時はOCRしない）
            catalog: ドメインカタログ
            interval: ポーリング間隔（秒）
            on_snapshot: スナップショット配信先
        """
        self.window_probe = window_probe
        self.url_probe = url_probe
        self.ocr_probe = ocr_probe
        self.catalog = catalog or DomainCatalog()
        self.interval = interval
        self.ocr_interval = ocr_interval
        self.on_snapshot = on_snapshot
        self._clock = clock
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="probe")

        self.running = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._deliver_lock = threading.Lock()

        # 世代番号: stop() のたびに進め, 古い世代のプローブ結果を捨てる
        self._generation = 0
        self._seq = 0
        self._last_delivered_seq = 0

        self._ocr_text: str | None = None
        self._ocr_digest = ""
        self._ocr_seq = 0
        self._last_ocr_at = float("-inf")

        self.last_snapshot: ContextSnapshot | None = None

        # エラー管理
        self.error_counts = {"window": 0, "url": 0, "ocr": 0}

        # 統計情報
        self.stats: dict[str, Any] = {
            "snapshots": 0,
            "stale_dropped": 0,
            "start_time": None,
            "last_snapshot_time": None,
        }

    # ------------------------------------------------------------------
    # Probes

    def collect_window_data(self) -> WindowInfo:
        """前面ウィンドウ情報を収集. 取得できなければ空の WindowInfo."""
        try:
            result = self.window_probe.read()
        except Exception:
            self.error_counts["window"] += 1
            logger.exception("ウィンドウ情報収集エラー")
            return WindowInfo()
        self.error_counts["window"] = 0
        return result.value if result.available else WindowInfo()

    def collect_url_data(self, bundle_id: str) -> str:
        """ブラウザURLを収集（ワーカースレッドで実行される）."""
        try:
            result = self.url_probe.fetch(bundle_id)
        except Exception:
            self.error_counts["url"] += 1
            logger.exception("URL収集エラー")
            return ""
        self.error_counts["url"] = 0
        return result.value if result.available else ""

    def collect_ocr_data(self, generation: int, seq: int) -> None:
        """OCRテキストを収集して保持する（ワーカースレッドで実行される）."""
        if self.ocr_probe is None:
            return
        try:
            result = self.ocr_probe.read_text()
        except Exception:
            self.error_counts["ocr"] += 1
            logger.exception("OCR収集エラー")
            return
        self.error_counts["ocr"] = 0

        cleaned = normalize_ocr(result.value) if result.available else ""
        digest = hashlib.sha256(cleaned.encode("utf-8")).hexdigest()
        with self._lock:
            if generation != self._generation or seq < self._ocr_seq:
                return
            self._ocr_seq = seq
            if digest == self._ocr_digest:
                return
            self._ocr_digest = digest
            self._ocr_text = cleaned

    # ------------------------------------------------------------------
    # Polling

    def _maybe_run_ocr(self, generation: int, seq: int, now: float) -> None:
        if self.ocr_probe is None or now - self._last_ocr_at < self.ocr_interval:
            return
        self._last_ocr_at = now
        self._executor.submit(self.collect_ocr_data, generation, seq)

    def poll_once(self) -> "Future[ContextSnapshot | None] | None":
        """1回分のサンプリングを実行する.

        ブラウザが前面のときはURL取得をワーカーへ投げて Future を返す.
        それ以外はその場で配信して None を返す.
        """
        with self._lock:
            self._seq += 1
            seq = self._seq
            generation = self._generation
        now = self._clock()

        window = self.collect_window_data()
        if window.bundle_id and self.url_probe.is_browser(window.bundle_id):
            future = self._executor.submit(self.collect_url_data, window.bundle_id)
            return self._chain(future, generation, seq, now, window)

        self._maybe_run_ocr(generation, seq, now)
        self._deliver(generation, make_snapshot(seq, now, window, "", self.catalog, self._ocr_text))
        return None

    def _chain(
        self,
        url_future: "Future[str]",
        generation: int,
        seq: int,
        now: float,
        window: WindowInfo,
    ) -> "Future[ContextSnapshot | None]":
        delivered: Future[ContextSnapshot | None] = Future()

        def _done(f: "Future[str]") -> None:
            url = f.result() if not f.cancelled() else ""
            snapshot = make_snapshot(seq, now, window, url, self.catalog)
            delivered.set_result(snapshot if self._deliver(generation, snapshot) else None)

        url_future.add_done_callback(_done)
        return delivered

    def _deliver(self, generation: int, snapshot: ContextSnapshot) -> bool:
        """最新のスナップショットだけを配信する. 古いものは捨てる."""
        with self._deliver_lock:
            with self._lock:
                if generation != self._generation:
                    return False
                if snapshot.seq <= self._last_delivered_seq:
                    self.stats["stale_dropped"] += 1
                    logger.debug("Dropping stale snapshot #%d", snapshot.seq)
                    return False
                self._last_delivered_seq = snapshot.seq
                self.last_snapshot = snapshot
                self.stats["snapshots"] += 1
                self.stats["last_snapshot_time"] = snapshot.timestamp
            if self.on_snapshot is not None:
                self.on_snapshot(snapshot)
        return True

    def _run(self, stop_event: threading.Event) -> None:
        # 最初のサンプリングも1間隔待ってから行う
        delay = self.interval
        while not stop_event.wait(delay):
            start_time = time.monotonic()
            try:
                self.poll_once()
            except Exception:
                logger.exception("サンプリングエラー")
            delay = max(0.0, self.interval - (time.monotonic() - start_time))

    def start(self) -> None:
        """ポーリングループをバックグラウンドスレッドで開始する"""
        if self.running:
            return
        self.running = True
        self._stop_event = threading.Event()
        self.stats["start_time"] = self._clock()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop_event,), name="context-sampler", daemon=True
        )
        self._thread.start()
        logger.info("Context sampler started (interval: %.1fs)", self.interval)

    def stop(self) -> None:
        """ポーリングを停止する. 実行中のプローブ結果は配信しない"""
        with self._lock:
            self._generation += 1
            self._ocr_text = None
            self._ocr_digest = ""
        self.running = False
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1.0)
        logger.info("Context sampler stopped (snapshots: %d)", self.stats["snapshots"])

    def shutdown(self) -> None:
        self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def get_status(self) -> dict[str, Any]:
        """現在の状態を取得"""
        return {
            "running": self.running,
            "interval": self.interval,
            "error_counts": self.error_counts.copy(),
            "stats": self.stats.copy(),
        }

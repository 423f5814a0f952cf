import subprocess
import sys
import time
from typing import Any, cast

import psutil

from guardian.model.models import ProbeResult, WindowInfo
from guardian.watchers.logger import logger

if sys.platform == "win32":
    import pywintypes  # pyright: ignore[reportMissingImports]
    import win32gui  # pyright: ignore[reportMissingImports]
    import win32process  # pyright: ignore[reportMissingImports]
else:  # pragma: no cover
    pywintypes = cast("Any", None)
    win32gui = cast("Any", None)
    win32process = cast("Any", None)

OSASCRIPT_TIMEOUT = 2.0

_FRONT_WINDOW_SCRIPT = """
tell application "System Events"
  set frontApp to first application process whose frontmost is true
  set appName to name of frontApp
  set bundleId to ""
  try
    set bundleId to bundle identifier of frontApp
  end try
  set winTitle to ""
  try
    set winTitle to name of front window of frontApp
  end try
  return appName & linefeed & bundleId & linefeed & winTitle
end tell
""".strip()

UNAVAILABLE: ProbeResult[WindowInfo] = ProbeResult(WindowInfo(), False)


def run_osascript(source: str, timeout: float = OSASCRIPT_TIMEOUT) -> str | None:
    """AppleScript を実行して標準出力を返す. 失敗時は None."""
    try:
        completed = subprocess.run(  # noqa: S603
            ["osascript", "-e", source],  # noqa: S607
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("osascript failed: %s", e)
        return None
    if completed.returncode != 0:
        logger.debug("osascript error: %s", completed.stderr.strip())
        return None
    return completed.stdout.rstrip("\n")


def _get_active_window_windows() -> ProbeResult[WindowInfo]:
    hwnd = win32gui.GetForegroundWindow()
    if not hwnd:
        return UNAVAILABLE

    try:
        title = win32gui.GetWindowText(hwnd)
        _, pid = win32process.GetWindowThreadProcessId(hwnd)
    except pywintypes.error:
        return UNAVAILABLE

    try:
        process_name = psutil.Process(pid).name()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return UNAVAILABLE
    app_name = process_name.removesuffix(".exe")
    return ProbeResult(WindowInfo(app_name=app_name, bundle_id=process_name, title=title or ""), True)


def _get_active_window_macos() -> ProbeResult[WindowInfo]:
    output = run_osascript(_FRONT_WINDOW_SCRIPT)
    if output is None:
        return UNAVAILABLE
    app_name, bundle_id, title = ([*output.split("\n", 2), "", ""])[:3]
    return ProbeResult(WindowInfo(app_name=app_name, bundle_id=bundle_id, title=title), True)


class ActiveWindowProbe:
    """前面アプリ名・識別子・ウィンドウタイトルを取得する."""

    def read(self) -> ProbeResult[WindowInfo]:
        if sys.platform == "win32":
            return _get_active_window_windows()
        if sys.platform == "darwin":
            return _get_active_window_macos()
        return UNAVAILABLE


if __name__ == "__main__":  # pragma: no cover
    # テスト実行
    probe = ActiveWindowProbe()
    for _ in range(3):
        _ = probe.read()
        time.sleep(1)

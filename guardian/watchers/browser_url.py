"""Active browser tab URL probe (AppleScript on macOS)."""

import sys

from guardian.model.models import ProbeResult
from guardian.watchers.active_window import run_osascript

CHROMIUM_BUNDLES = frozenset(
    {
        "com.google.Chrome",
        "com.google.Chrome.canary",
        "com.brave.Browser",
        "company.thebrowser.Browser",  # Arc
        "com.microsoft.Edge",
    }
)
SAFARI_BUNDLE = "com.apple.Safari"

# Windows ではプロセス名で判定する（URL自体は取得できない）
WINDOWS_BROWSERS = frozenset({"chrome.exe", "msedge.exe", "brave.exe", "firefox.exe"})

_CHROMIUM_SCRIPT = """
tell application id "{bundle_id}"
  if (count of windows) = 0 then return ""
  set theWindow to front window
  if (count of tabs of theWindow) = 0 then return ""
  return URL of active tab of theWindow
end tell
""".strip()

_SAFARI_SCRIPT = """
tell application id "com.apple.Safari"
  if (count of windows) = 0 then return ""
  return URL of current tab of front window
end tell
""".strip()

UNAVAILABLE: ProbeResult[str] = ProbeResult("", False)


class BrowserURLProbe:
    """前面ブラウザのアクティブタブURLを取得する.

    AppleScript の呼び出しはブロックするので, サンプラーはワーカースレッドから呼ぶ.
    """

    def is_browser(self, bundle_id: str) -> bool:
        return (
            bundle_id in CHROMIUM_BUNDLES
            or bundle_id == SAFARI_BUNDLE
            or bundle_id.lower() in WINDOWS_BROWSERS
        )

    def fetch(self, bundle_id: str) -> ProbeResult[str]:
        if sys.platform != "darwin":
            return UNAVAILABLE
        if bundle_id in CHROMIUM_BUNDLES:
            source = _CHROMIUM_SCRIPT.format(bundle_id=bundle_id)
        elif bundle_id == SAFARI_BUNDLE:
            source = _SAFARI_SCRIPT
        else:
            return UNAVAILABLE

        url = run_osascript(source)
        if not url:
            return UNAVAILABLE
        return ProbeResult(url.strip(), True)

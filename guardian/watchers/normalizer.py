"""Window title / URL normalization helpers (pure functions, no I/O)."""

import re
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit

from guardian.model.models import ParsedURL

# アプリ名を後ろに付けるときによく使われる区切り文字
SPLIT_TOKENS = (" - ", " — ", " – ", " | ", " · ")

# タイトル末尾から取り除くブラウザ名
APP_SUFFIXES = frozenset(
    {
        "Google Chrome",
        "Chrome",
        "Safari",
        "Brave",
        "Brave Browser",
        "Arc",
        "Microsoft Edge",
        "Edge",
        # ブラウザがタブタイトルに付けるサイト名
        "YouTube",
    }
)
_SUFFIX_PREFIXES = ("safari", "google chrome", "brave", "arc", "microsoft edge")

# ホストごとに残すクエリパラメータ. それ以外は全て捨てる
KEEP_QUERY_KEYS: dict[str, frozenset[str]] = {
    "youtube.com": frozenset({"v", "list", "t"}),
    "m.youtube.com": frozenset({"v", "list", "t"}),
    "youtu.be": frozenset({"v", "list", "t"}),
    "google.com": frozenset({"q"}),
}

_WHITESPACE_RE = re.compile(r"\s+")
_SLASHES_RE = re.compile(r"/{2,}")


def squish_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _is_app_suffix(segment: str, app_name: str | None) -> bool:
    last = segment.strip()
    last_lower = last.lower()
    app_lower = (app_name or "").strip().lower()
    if app_lower and last_lower == app_lower:
        return True
    if last in APP_SUFFIXES:
        return True
    # "Something – Safari Technology Preview" のようなパターン
    return any(last_lower == p or last_lower.startswith(p + " ") for p in _SUFFIX_PREFIXES)


def _strip_trailing_app_name(title: str, app_name: str) -> str | None:
    escaped = re.escape(app_name)
    for pattern in (rf" — {escaped}$", rf" - {escaped}$", rf" \| {escaped}$"):
        cleaned, count = re.subn(pattern, "", title, flags=re.IGNORECASE)
        if count:
            return cleaned.strip()
    return None


def normalize_title(app_name: str | None, bundle_id: str | None, raw_title: str | None) -> str:
    """ウィンドウタイトルから末尾のアプリ名を取り除く.

    "YouTube - Google Chrome" -> "YouTube"
    "LeetCode — Safari" -> "LeetCode"
    "README.md — Visual Studio Code" はアプリ名が一致しない限りそのまま.

    bundle_id は現状使わないが, プローブとシグネチャを揃えるために受け取る.
    """
    del bundle_id
    title = squish_whitespace(raw_title or "")
    # "Video - YouTube - Google Chrome" のように複数重なることがある
    while title:
        stripped = _strip_one_suffix(title, app_name)
        if stripped == title:
            break
        title = stripped
    return title


def _strip_one_suffix(title: str, app_name: str | None) -> str:
    for token in SPLIT_TOKENS:
        if token not in title:
            continue
        parts = [part.strip() for part in title.split(token)]
        if len(parts) >= 2 and _is_app_suffix(parts[-1], app_name):
            return squish_whitespace(" - ".join(parts[:-1]))

    if app_name:
        trimmed = _strip_trailing_app_name(title, app_name)
        if trimmed is not None:
            return trimmed

    return title


def _normalized_path(raw_path: str) -> str:
    # デコードは1段だけ. 残った "%" は戻しておき, 再正規化で値が変わらないようにする
    path = unquote(raw_path).replace("%", "%25")
    if not path.startswith("/"):
        path = "/" + path
    path = _SLASHES_RE.sub("/", path)
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path


def _short_path(path: str, keep_segments: int = 2) -> str:
    segments = [seg for seg in path.split("/") if seg]
    if not segments:
        return ""
    return "/" + "/".join(segments[:keep_segments])


def _filtered_query(host: str, query: str) -> str:
    keep = KEEP_QUERY_KEYS.get(host, frozenset())
    if not keep or not query:
        return ""
    kept = [(k, v) for k, v in parse_qsl(query, keep_blank_values=True) if k.lower() in keep]
    return urlencode(kept)


def normalize_url(raw: str | None) -> ParsedURL | None:
    """URL文字列を比較可能な形に正規化する. 解析できない場合は None."""
    text = (raw or "").strip()
    if not text:
        return None

    # スキームなしでホストっぽい文字列には https:// を補う
    if "://" not in text and "." in text:
        text = "https://" + text

    try:
        parts = urlsplit(text)
        hostname = parts.hostname
    except ValueError:
        return None
    if not hostname:
        return None

    host = hostname.lower()
    if host.startswith("www."):
        host = host[4:]
    if not host:
        return None

    path = _normalized_path(parts.path)
    path_short = _short_path(path)
    query = _filtered_query(host, parts.query)

    return ParsedURL(
        original=raw or "",
        host=host,
        path=path,
        path_short=path_short,
        display=host + path_short,
        canonical=host + path,
        query=query,
    )

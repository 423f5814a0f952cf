"""Host -> TopicCategory catalog with optional JSON overrides."""

import json
import os
from pathlib import Path

from guardian.model.models import TopicCategory
from guardian.watchers.logger import logger

DEFAULT_OVERRIDES_PATH = Path.home() / ".guardian" / "domain_catalog.json"

_C = TopicCategory

DEFAULT_MAP: dict[str, TopicCategory] = {
    # Coding / Dev
    "leetcode.com": _C.CODING,
    "github.com": _C.CODING,
    "gitlab.com": _C.CODING,
    "bitbucket.org": _C.CODING,
    "stackoverflow.com": _C.CODING,
    "stackexchange.com": _C.CODING,
    "codeforces.com": _C.CODING,
    "hackerrank.com": _C.CODING,
    "geeksforgeeks.org": _C.CODING,
    "replit.com": _C.CODING,
    # Docs / Productivity
    "docs.google.com": _C.DOCS,
    "drive.google.com": _C.STORAGE,
    "notion.so": _C.DOCS,
    "notion.site": _C.DOCS,
    "confluence.atlassian.com": _C.DOCS,
    "dropbox.com": _C.STORAGE,
    "onedrive.live.com": _C.STORAGE,
    "evernote.com": _C.DOCS,
    "linear.app": _C.PRODUCTIVITY,
    "jira.atlassian.com": _C.PRODUCTIVITY,
    "asana.com": _C.PRODUCTIVITY,
    "clickup.com": _C.PRODUCTIVITY,
    "figma.com": _C.PRODUCTIVITY,
    # Learning
    "coursera.org": _C.LEARNING,
    "udemy.com": _C.LEARNING,
    "khanacademy.org": _C.LEARNING,
    # AI / Assistants
    "chat.openai.com": _C.AI,
    "openai.com": _C.AI,
    "claude.ai": _C.AI,
    "perplexity.ai": _C.AI,
    "poe.com": _C.AI,
    "gemini.google.com": _C.AI,
    "x.ai": _C.AI,
    "chatgpt.com": _C.AI,
    "aistudio.google.com": _C.AI,
    # Social / Forums
    "twitter.com": _C.SOCIAL,
    "x.com": _C.SOCIAL,
    "facebook.com": _C.SOCIAL,
    "instagram.com": _C.SOCIAL,
    "tiktok.com": _C.SOCIAL,
    "reddit.com": _C.SOCIAL,
    "threads.net": _C.SOCIAL,
    "bluesky.social": _C.SOCIAL,
    "linkedin.com": _C.SOCIAL,  # ユーザーによっては productivity だが既定は social
    # Video / Music / Gaming
    "youtube.com": _C.VIDEO,
    "youtu.be": _C.VIDEO,
    "netflix.com": _C.VIDEO,
    "hulu.com": _C.VIDEO,
    "twitch.tv": _C.VIDEO,
    "spotify.com": _C.MUSIC,
    "steampowered.com": _C.GAMING,
    # Shopping
    "amazon.com": _C.SHOPPING,
    "ebay.com": _C.SHOPPING,
    # Messaging / Email
    "mail.google.com": _C.EMAIL,
    "outlook.live.com": _C.EMAIL,
    "discord.com": _C.MESSAGING,
    "slack.com": _C.MESSAGING,
    "whatsapp.com": _C.MESSAGING,
    "messenger.com": _C.MESSAGING,
    "telegram.org": _C.MESSAGING,
    # News
    "nytimes.com": _C.NEWS,
    "wsj.com": _C.NEWS,
    "bloomberg.com": _C.NEWS,
    "bbc.com": _C.NEWS,
    "theverge.com": _C.NEWS,
    "techcrunch.com": _C.NEWS,
    # Finance
    "robinhood.com": _C.FINANCE,
    "coinbase.com": _C.FINANCE,
    "chase.com": _C.FINANCE,
    "bankofamerica.com": _C.FINANCE,
    # Cloud / Dev Tools
    "console.aws.amazon.com": _C.CLOUD,
    "cloud.google.com": _C.CLOUD,
    "azure.microsoft.com": _C.CLOUD,
    "vercel.com": _C.CLOUD,
    "supabase.com": _C.CLOUD,
}

_VIDEO_HOSTS = frozenset({"youtube.com", "m.youtube.com", "youtu.be"})
_SEARCH_HOSTS = frozenset({"bing.com", "duckduckgo.com"})


class DomainCatalog:
    """ホスト名からトピック分類を引くカタログ."""

    def __init__(self, mapping: dict[str, TopicCategory] | None = None) -> None:
        self._map: dict[str, TopicCategory] = dict(DEFAULT_MAP if mapping is None else mapping)

    def category(self, host: str, path: str = "/") -> TopicCategory:
        """host + path からカテゴリを返す.

        1) 完全一致 2) 左端のサブドメインを順に外して一致 3) ヒューリスティック
        の順に試し, どれにも当たらなければ OTHER.
        """
        h = host.lower()
        if not h:
            return TopicCategory.OTHER

        found = self._map.get(h)
        if found is not None:
            return found

        labels = h.split(".")
        if len(labels) >= 3:
            for i in range(1, len(labels) - 1):
                found = self._map.get(".".join(labels[i:]))
                if found is not None:
                    return found

        if h in _VIDEO_HOSTS:
            return TopicCategory.VIDEO
        if h == "google.com":
            return TopicCategory.SEARCH if path.startswith("/search") else TopicCategory.PRODUCTIVITY
        if h in _SEARCH_HOSTS:
            return TopicCategory.SEARCH

        return TopicCategory.OTHER

    def set_override(self, host: str, category: TopicCategory) -> None:
        self._map[host.lower()] = category

    def merge_overrides(self, raw: object) -> int:
        """{"host": "category"} 形式のマッピングをマージする.

        不正なエントリは個別に無視する. 取り込んだ件数を返す.
        """
        if not isinstance(raw, dict):
            logger.warning("Domain catalog override is not an object; ignored")
            return 0
        merged = 0
        for host, value in raw.items():
            if not isinstance(host, str) or not isinstance(value, str) or not host.strip():
                logger.warning("Ignoring malformed catalog entry: %r -> %r", host, value)
                continue
            try:
                category = TopicCategory(value.strip().lower())
            except ValueError:
                logger.warning("Ignoring unknown category %r for host %s", value, host)
                continue
            self._map[host.strip().lower()] = category
            merged += 1
        return merged

    def load_overrides(self, path: Path | None = None) -> int:
        """JSONファイルから上書き設定を読み込む. 無い・壊れている場合は何もしない."""
        resolved = path or Path(os.getenv("GUARDIAN_CATALOG_PATH") or DEFAULT_OVERRIDES_PATH)
        if not resolved.exists():
            return 0
        try:
            raw = json.loads(resolved.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Failed to load domain catalog overrides from %s", resolved, exc_info=True)
            return 0
        merged = self.merge_overrides(raw)
        logger.info("Loaded %d domain catalog overrides from %s", merged, resolved)
        return merged

    def export_json(self) -> str:
        """現在のカタログをJSONで書き出す（上書きファイル作成用）."""
        return json.dumps({h: c.value for h, c in sorted(self._map.items())}, indent=2)

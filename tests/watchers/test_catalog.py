import json

import pytest

from guardian.model.models import TopicCategory
from guardian.watchers.catalog import DomainCatalog


class TestDomainCatalog:
    """ドメインカタログのテスト"""

    @pytest.fixture
    def catalog(self):
        return DomainCatalog()

    @pytest.mark.parametrize(
        ("host", "path", "expected"),
        [
            ("leetcode.com", "/problems/two-sum", TopicCategory.CODING),
            ("youtube.com", "/watch", TopicCategory.VIDEO),
            ("m.youtube.com", "/", TopicCategory.VIDEO),
            ("docs.google.com", "/document/d/1", TopicCategory.DOCS),
            ("google.com", "/search", TopicCategory.SEARCH),
            ("google.com", "/", TopicCategory.PRODUCTIVITY),
            ("duckduckgo.com", "/", TopicCategory.SEARCH),
            ("old.reddit.com", "/r/python", TopicCategory.SOCIAL),
            ("example.org", "/", TopicCategory.OTHER),
            ("", "/", TopicCategory.OTHER),
        ],
    )
    def test_category(self, catalog, host, path, expected):
        assert catalog.category(host, path) is expected

    def test_subdomain_walk_needs_three_labels(self):
        """2ラベルのホストは親ドメインを探さない"""
        catalog = DomainCatalog({"com": TopicCategory.NEWS})
        assert catalog.category("unknown.com") is TopicCategory.OTHER

    def test_exact_match_wins_over_parent(self, catalog):
        assert catalog.category("drive.google.com") is TopicCategory.STORAGE

    def test_set_override(self, catalog):
        catalog.set_override("LinkedIn.com", TopicCategory.PRODUCTIVITY)
        assert catalog.category("linkedin.com") is TopicCategory.PRODUCTIVITY

    def test_merge_overrides_skips_bad_entries(self, catalog):
        merged = catalog.merge_overrides(
            {
                "intranet.example.com": "docs",
                "games.example.com": "not-a-category",
                "": "coding",
                "bad.example.com": 3,
            }
        )

        assert merged == 1
        assert catalog.category("intranet.example.com") is TopicCategory.DOCS
        assert catalog.category("games.example.com") is TopicCategory.OTHER

    def test_merge_overrides_rejects_non_object(self, catalog):
        assert catalog.merge_overrides(["leetcode.com"]) == 0

    def test_load_overrides_from_file(self, catalog, tmp_path):
        path = tmp_path / "domain_catalog.json"
        path.write_text(json.dumps({"wiki.corp.local": "docs"}), encoding="utf-8")

        assert catalog.load_overrides(path) == 1
        assert catalog.category("wiki.corp.local") is TopicCategory.DOCS

    def test_load_overrides_from_env(self, catalog, tmp_path, monkeypatch):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"youtube.com": "learning"}), encoding="utf-8")
        monkeypatch.setenv("GUARDIAN_CATALOG_PATH", str(path))

        assert catalog.load_overrides() == 1
        assert catalog.category("youtube.com") is TopicCategory.LEARNING

    def test_missing_or_broken_file_is_ignored(self, catalog, tmp_path):
        assert catalog.load_overrides(tmp_path / "missing.json") == 0

        broken = tmp_path / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        assert catalog.load_overrides(broken) == 0
        assert catalog.category("leetcode.com") is TopicCategory.CODING

    def test_export_json_round_trips_through_merge(self, catalog):
        exported = json.loads(catalog.export_json())
        fresh = DomainCatalog({})

        assert fresh.merge_overrides(exported) == len(exported)
        assert fresh.category("github.com") is TopicCategory.CODING

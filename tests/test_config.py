"""Tests for dicom_catalog/config.py."""

from dicom_catalog.config import CONFIG, _deep_merge, load_config


class TestDeepMerge:
    def test_nested_keys_are_merged(self):
        base = {"scan": {"progress_every": 50, "min_file_bytes": 64}}
        merged = _deep_merge(base, {"scan": {"progress_every": 10}})
        assert merged == {"scan": {"progress_every": 10, "min_file_bytes": 64}}

    def test_base_is_not_mutated(self):
        base = {"scan": {"progress_every": 50}}
        _deep_merge(base, {"scan": {"progress_every": 10}})
        assert base["scan"]["progress_every"] == 50

    def test_non_dict_override_replaces(self):
        merged = _deep_merge({"dictionary": {"resources": ["a.json"]}},
                             {"dictionary": {"resources": ["b.json"]}})
        assert merged["dictionary"]["resources"] == ["b.json"]


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "nope.yaml"))
        assert cfg["scan"]["progress_every"] == 50
        assert cfg["scan"]["min_file_bytes"] == 64
        assert cfg["headers"]["preview_max_chars"] == 120

    def test_yaml_overrides_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("headers:\n  max_depth: 16\n")
        cfg = load_config(str(path))
        assert cfg["headers"]["max_depth"] == 16
        assert cfg["headers"]["preview_max_chars"] == 120

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(str(path))["jobs"]["max_workers"] == 4

    def test_singleton_has_every_section(self):
        for section in ("scan", "headers", "dictionary", "jobs", "logging"):
            assert section in CONFIG

"""
Test cases for loading the target list from TOML.
"""

import pytest

from patrol.config_loader import load_targets, parse_targets
from patrol.errors import ConfigurationError
from patrol.models import RenderMode


def write_config(tmp_path, text):
    path = tmp_path / "config.toml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadTargets:
    """Test cases for load_targets."""

    def test_table_per_target(self, tmp_path):
        path = write_config(tmp_path, """
[news]
url = "https://example.com/news"
selector = "main .headline"
mode = "simple"
wait_seconds = 2
interval_minutes = 5

[home]
url = "https://example.com/"
""")

        targets = load_targets(path, default_interval_minutes=1)

        assert [t.target_id for t in targets] == ["news", "home"]
        news, home = targets
        assert news.mode == RenderMode.SIMPLE
        assert news.wait.selector == "main .headline"
        assert news.wait.wait_seconds == 2
        assert news.interval_seconds == 300
        assert home.mode == RenderMode.FULL
        assert home.wait.selector == "body"
        assert home.wait.wait_seconds is None
        assert home.interval_seconds == 60

    def test_targets_array_defaults_id_to_url(self, tmp_path):
        path = write_config(tmp_path, """
[[targets]]
url = "https://example.org/a"

[[targets]]
id = "b"
url = "https://example.org/b"
""")

        targets = load_targets(path)

        assert [t.target_id for t in targets] == ["https://example.org/a", "b"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_targets(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path):
        path = write_config(tmp_path, "[broken\nurl = ")
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            load_targets(path)

    def test_empty_file(self, tmp_path):
        path = write_config(tmp_path, "")
        with pytest.raises(ConfigurationError, match="No targets"):
            load_targets(path)


class TestParseTargets:
    """Test cases for parse_targets validation."""

    def test_missing_url(self):
        with pytest.raises(ConfigurationError, match=r"\[news\]"):
            parse_targets({"news": {"selector": "main"}})

    def test_invalid_url(self):
        with pytest.raises(ConfigurationError):
            parse_targets({"news": {"url": "not a url"}})

    def test_unknown_mode(self):
        with pytest.raises(ConfigurationError):
            parse_targets({"news": {"url": "https://example.com/", "mode": "headless"}})

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError):
            parse_targets({"news": {"url": "https://example.com/", "selectr": "main"}})

    @pytest.mark.parametrize("interval", [0, -5])
    def test_non_positive_interval(self, interval):
        with pytest.raises(ConfigurationError, match="interval"):
            parse_targets({"news": {"url": "https://example.com/", "interval_minutes": interval}})

    def test_non_positive_default_interval(self):
        with pytest.raises(ConfigurationError):
            parse_targets({"news": {"url": "https://example.com/"}}, default_interval_minutes=0)

    @pytest.mark.parametrize("interval", ["inf", "nan", "1e10"])
    def test_unrepresentable_interval_rejected_at_load(self, tmp_path, interval):
        path = write_config(tmp_path, f"""
[a]
url = "https://a.example/"
interval_minutes = {interval}

[b]
url = "https://b.example/"
""")

        with pytest.raises(ConfigurationError, match=r"\[a\]: interval"):
            load_targets(path)

    def test_non_finite_default_interval(self):
        with pytest.raises(ConfigurationError, match="finite"):
            parse_targets({"news": {"url": "https://example.com/"}}, default_interval_minutes=float("inf"))

    def test_one_year_interval_is_accepted(self):
        targets = parse_targets({"news": {"url": "https://example.com/", "interval_minutes": 366 * 24 * 60}})
        assert targets[0].interval_seconds == 366 * 24 * 3600

    def test_duplicate_ids(self):
        document = {
            "https://example.com/": {"url": "https://example.com/"},
            "targets": [{"url": "https://example.com/"}],
        }
        with pytest.raises(ConfigurationError, match="Duplicate"):
            parse_targets(document)

    def test_unexpected_scalar(self):
        with pytest.raises(ConfigurationError, match="Unexpected"):
            parse_targets({"interval": 5})

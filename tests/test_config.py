"""Settings loading and validation."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from core.config import (
    EXAMPLE_CONFIG,
    AppSettings,
    SourceDescriptor,
    load_settings,
    write_example_config,
)
from core.domain.errors import ConfigurationError
from core.domain.family import IpFamily, IpVersionSelection
from core.domain.models import DomainTarget

VALID_TOML = """
update_interval_seconds = 120
consensus_threshold = 2

[[sources]]
name = "one"
url_v4 = "https://one.example/ip"

[[sources]]
name = "two"
url_v4 = "https://two.example/ip"
url_v6 = "https://two6.example/ip"

[[cloudflare]]
name = "example.com"
zone_id = "0123456789abcdef0123456789abcdef"
api_token = "cf-token-123"

[[cloudflare.subdomains]]
name = "www"
ip_version = "v6"
"""


class TestAppSettings:
    def test_defaults(self):
        settings = AppSettings()

        assert settings.update_interval_seconds == 300
        assert settings.consensus_threshold == 2
        assert settings.disable_on_auth_failure is False
        assert len(settings.enabled_sources()) >= 2
        assert settings.enabled_provider_count() == 0

    def test_loads_toml_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(VALID_TOML, encoding="utf-8")

        settings = load_settings(path)

        assert settings.update_interval_seconds == 120
        assert [source.name for source in settings.sources] == ["one", "two"]
        assert settings.cloudflare[0].subdomains[0].ip_version is IpVersionSelection.V6
        assert settings.cloudflare[0].rate_limit.capacity == 1200
        assert settings.enabled_provider_count() == 1

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text(VALID_TOML, encoding="utf-8")
        monkeypatch.setenv("DYNDNS_SYNC_UPDATE_INTERVAL_SECONDS", "42")

        assert load_settings(path).update_interval_seconds == 42

    def test_config_file_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "other.toml"
        path.write_text(VALID_TOML, encoding="utf-8")
        monkeypatch.setenv("DYNDNS_SYNC_CONFIG_FILE", str(path))

        assert AppSettings().update_interval_seconds == 120

    def test_threshold_above_source_count_is_rejected(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(VALID_TOML.replace("consensus_threshold = 2", "consensus_threshold = 3"), encoding="utf-8")

        with pytest.raises(ConfigurationError, match="consensus_threshold"):
            load_settings(path)

    def test_interface_detection_counts_as_a_source(self, tmp_path):
        path = tmp_path / "config.toml"
        toml = VALID_TOML.replace("consensus_threshold = 2", "consensus_threshold = 3\ninterface_detection = true")
        path.write_text(toml, encoding="utf-8")

        assert load_settings(path).consensus_threshold == 3

    def test_negative_interval_is_rejected(self, monkeypatch):
        monkeypatch.setenv("DYNDNS_SYNC_UPDATE_INTERVAL_SECONDS", "-5")

        with pytest.raises(ConfigurationError):
            load_settings()

    def test_malformed_toml_is_a_configuration_error(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("this is = = not toml", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_source_needs_an_endpoint(self):
        with pytest.raises(ValueError):
            SourceDescriptor(name="empty")


class TestExampleConfig:
    def test_write_and_refuse_overwrite(self, tmp_path):
        target = tmp_path / "conf" / "config.toml"

        written = write_example_config(target)

        assert written == target
        assert target.read_text(encoding="utf-8") == EXAMPLE_CONFIG
        with pytest.raises(FileExistsError):
            write_example_config(target)
        write_example_config(target, force=True)

    def test_example_config_loads(self, tmp_path):
        target = write_example_config(tmp_path / "config.toml")

        settings = load_settings(target)

        assert settings.enabled_provider_count() == 1
        assert settings.arvancloud[0].enabled is False


class TestDomainTarget:
    def test_apex_and_wildcard(self):
        apex = DomainTarget(provider="p", zone="Example.COM.", name="@")
        wildcard = DomainTarget(provider="p", zone="example.com", name="*")

        assert apex.fqdn == "example.com"
        assert apex.record_name == "@"
        assert wildcard.fqdn == "*.example.com"
        assert apex.families == frozenset(IpFamily.all())

    @pytest.mark.parametrize("name", ["-bad", "a..b", "x" * 64])
    def test_invalid_labels(self, name):
        with pytest.raises(ValueError):
            DomainTarget(provider="p", zone="example.com", name=name)


class TestLoadIsolation:
    def test_load_leaves_the_class_untouched(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(VALID_TOML, encoding="utf-8")

        loaded = AppSettings.load(path)

        assert loaded.update_interval_seconds == 120
        assert AppSettings.config_file_override is None
        assert AppSettings().update_interval_seconds == 300

    def test_concurrent_loads_read_their_own_file(self, tmp_path):
        paths = {}
        for interval in (111, 222):
            path = tmp_path / f"config-{interval}.toml"
            path.write_text(VALID_TOML.replace("120", str(interval)), encoding="utf-8")
            paths[interval] = path

        jobs = [interval for interval in (111, 222) for _ in range(20)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda interval: load_settings(paths[interval]), jobs))

        assert [settings.update_interval_seconds for settings in results] == jobs

    def test_source_budget_defaults(self):
        source = SourceDescriptor(name="svc", url_v4="https://v4.example.net/")

        assert source.max_requests_per_hour == 200
        assert source.retries == 1
        with pytest.raises(ValueError):
            SourceDescriptor(name="svc", url_v4="https://v4.example.net/", max_requests_per_hour=0)

"""Unit tests for configuration loading and validation."""

from datetime import timedelta
from pathlib import Path

from gslb_controller.config import Config, _parse_bool, _parse_list, load_config

ENV = {
    "POD_NAMESPACE": "k8gb",
    "EDGE_DNS_SERVER": "10.10.0.53",
    "EDGE_DNS_ZONE": "example.com",
    "DNS_ZONE": "cloud.example.com",
    "CLUSTER_GEO_TAG": "eu",
    "EXT_GSLB_CLUSTERS_GEO_TAGS": "us, za",
    "COREDNS_EXPOSED": "true",
    "RECONCILE_REQUEUE_SECONDS": "15",
    "SPLIT_BRAIN_THRESHOLD_SECONDS": "120",
}

# =============================================================================
# Parsing helpers
# =============================================================================


def test_parse_bool_values() -> None:
    assert _parse_bool("true") is True
    assert _parse_bool("YES") is True
    assert _parse_bool("0") is False
    assert _parse_bool(None, default=True) is True
    assert _parse_bool("", default=True) is True


def test_parse_list_from_string_and_list() -> None:
    assert _parse_list(" us, ,za ") == ["us", "za"]
    assert _parse_list(["us", "za"]) == ["us", "za"]
    assert _parse_list(None) == []


# =============================================================================
# Environment
# =============================================================================


class TestConfigFromEnv:
    def test_reads_all_core_settings(self) -> None:
        config = Config.from_env(ENV)

        assert config.k8gb_namespace == "k8gb"
        assert config.edge_dns_server == "10.10.0.53"
        assert config.ext_clusters_geo_tags == ["us", "za"]
        assert config.coredns_exposed is True
        assert config.reconcile_requeue_seconds == 15
        assert config.split_brain_threshold == timedelta(seconds=120)
        assert config.fake_dns_enabled is False

    def test_defaults(self) -> None:
        config = Config.from_env({})

        assert config.k8gb_namespace == "k8gb"
        assert config.edge_dns_type == "noedgedns"
        assert config.reconcile_requeue_seconds == 30
        assert config.split_brain_threshold_seconds == 300
        assert config.sync_mode == "watch"
        assert config.infoblox.wapi_version == "2.3.1"
        assert config.infoblox.ssl_verify is True

    def test_edge_dns_type_derived_from_flags(self) -> None:
        assert Config.from_env({"COREDNS_EXPOSED": "true"}).edge_dns_type == "coredns"
        assert Config.from_env({"ROUTE53_ENABLED": "true"}).edge_dns_type == "route53"
        assert Config.from_env({"NS1_ENABLED": "true"}).edge_dns_type == "ns1"
        assert Config.from_env({"INFOBLOX_GRID_HOST": "grid.example.com"}).edge_dns_type == "infoblox"

    def test_explicit_edge_dns_type_wins(self) -> None:
        config = Config.from_env({"EDGE_DNS_TYPE": "NS1", "ROUTE53_ENABLED": "true"})

        assert config.edge_dns_type == "ns1"

    def test_invalid_integer_falls_back_to_default(self) -> None:
        assert Config.from_env({"RECONCILE_REQUEUE_SECONDS": "soon"}).reconcile_requeue_seconds == 30


# =============================================================================
# YAML
# =============================================================================


def test_from_yaml(tmp_path: Path) -> None:
    config_file = tmp_path / "gslb.yaml"
    config_file.write_text(
        """
k8gb_namespace: gslb-system
edge_dns_server: 10.10.0.53
edge_dns_zone: example.com
dns_zone: cloud.example.com
cluster_geo_tag: eu
ext_clusters_geo_tags: [us, za]
infoblox:
  grid_host: grid.example.com
  username: admin
  password: secret
  ssl_verify: false
"""
    )

    config = Config.from_yaml(str(config_file))

    assert config.k8gb_namespace == "gslb-system"
    assert config.ext_clusters_geo_tags == ["us", "za"]
    assert config.edge_dns_type == "infoblox"
    assert config.infoblox.grid_host == "grid.example.com"
    assert config.infoblox.ssl_verify is False


def test_load_config_prefers_existing_file(tmp_path: Path) -> None:
    config_file = tmp_path / "gslb.yaml"
    config_file.write_text("dns_zone: from-file.example.com\n")

    config = load_config({"GSLB_CONFIG_PATH": str(config_file), "DNS_ZONE": "from-env.example.com"})

    assert config.dns_zone == "from-file.example.com"


def test_load_config_falls_back_to_env(tmp_path: Path) -> None:
    config = load_config({"GSLB_CONFIG_PATH": str(tmp_path / "missing.yaml"), "DNS_ZONE": "cloud.example.com"})

    assert config.dns_zone == "cloud.example.com"


# =============================================================================
# Naming and validation
# =============================================================================


def test_nameserver_names() -> None:
    config = Config.from_env(ENV)

    assert config.ns_server_name == "gslb-ns-cloud-example-com-eu.example.com"
    assert config.ns_server_names_ext == [
        "gslb-ns-cloud-example-com-us.example.com",
        "gslb-ns-cloud-example-com-za.example.com",
    ]


def test_heartbeat_fqdn() -> None:
    assert Config.from_env(ENV).heartbeat_fqdn("us") == "us-heartbeat-cloud.example.com.example.com"


def test_valid_config_has_no_errors() -> None:
    assert Config.from_env(ENV).validate() == []


def test_validate_reports_missing_edge_settings() -> None:
    errors = Config.from_env({"EDGE_DNS_TYPE": "route53"}).validate()

    assert any("EDGE_DNS_SERVER" in e for e in errors)
    assert any("DNS_ZONE" in e for e in errors)
    assert any("CLUSTER_GEO_TAG" in e for e in errors)


def test_validate_rejects_unknown_type_and_own_geo_tag_as_peer() -> None:
    env = dict(ENV, EDGE_DNS_TYPE="bind", EXT_GSLB_CLUSTERS_GEO_TAGS="eu,us")

    errors = Config.from_env(env).validate()

    assert any("Unsupported EDGE_DNS_TYPE" in e for e in errors)
    assert any("must not be listed" in e for e in errors)

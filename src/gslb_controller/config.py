"""Controller configuration.

Configuration is read once at startup into an immutable `Config` and passed
explicitly to every component. Two sources are supported:

    Environment variables:
        POD_NAMESPACE                  Namespace the controller runs in and writes
                                       DNSEndpoint resources to (default: k8gb)
        WATCH_NAMESPACE                Namespace to reconcile GSLB resources in
                                       (default: all namespaces)
        EDGE_DNS_SERVER                Edge DNS server queried for hostnames, TXT
                                       markers and peer targets
        EDGE_DNS_ZONE                  Parent zone hosting the nameserver names
        DNS_ZONE                       Zone delegated to the cluster nameservers
        CLUSTER_GEO_TAG                Geo tag of this cluster
        EXT_GSLB_CLUSTERS_GEO_TAGS     Comma-separated geo tags of peer clusters
        EDGE_DNS_TYPE                  noedgedns, ns1, route53, coredns, infoblox
                                       (default: derived from the flags below)
        ROUTE53_ENABLED / NS1_ENABLED  Legacy edge DNS type switches
        COREDNS_EXPOSED                Edge CoreDNS is published via a LoadBalancer
        RECONCILE_REQUEUE_SECONDS      Fixed requeue delay (default: 30)
        SPLIT_BRAIN_THRESHOLD_SECONDS  Maximum marker age (default: 300)
        FAKE_DNS_ENABLED               Query 127.0.0.1:7753 instead of real servers

    Infoblox:
        INFOBLOX_GRID_HOST, INFOBLOX_WAPI_VERSION (default: 2.3.1),
        INFOBLOX_WAPI_PORT (default: 443), INFOBLOX_SSL_VERIFY (default: true),
        EXTERNAL_DNS_INFOBLOX_WAPI_USERNAME, EXTERNAL_DNS_INFOBLOX_WAPI_PASSWORD

    Runtime:
        SYNC_MODE              "once" or "watch" (default: watch)
        POLL_INTERVAL_SECONDS  Sweep interval in watch mode (default: 30)
        LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)
        GSLB_CONFIG_PATH       Optional YAML file; when it exists it replaces
                               the environment as configuration source

    YAML keys mirror the lower-cased variable names, with Infoblox settings
    nested under an ``infoblox`` mapping.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

DNS_TYPE_NO_EDGE_DNS = "noedgedns"
DNS_TYPE_NS1 = "ns1"
DNS_TYPE_ROUTE53 = "route53"
DNS_TYPE_COREDNS = "coredns"
DNS_TYPE_INFOBLOX = "infoblox"

DNS_TYPES = (
    DNS_TYPE_NO_EDGE_DNS,
    DNS_TYPE_NS1,
    DNS_TYPE_ROUTE53,
    DNS_TYPE_COREDNS,
    DNS_TYPE_INFOBLOX,
)

SYNC_MODES = ("once", "watch")


# =============================================================================
# Parsing helpers
# =============================================================================


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip()
    if not text:
        return default
    return text.lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(value: Any, *, default: int) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        logger.warning(f"Invalid integer value '{value}', using default {default}")
        return default


def _parse_list(value: Any) -> List[str]:
    """Accept a YAML list or a comma-separated string."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item and item.strip()]


def _derive_dns_type(values: Mapping[str, Any]) -> str:
    explicit = str(values.get("edge_dns_type") or "").lower().strip()
    if explicit:
        return explicit
    if values.get("infoblox_grid_host"):
        return DNS_TYPE_INFOBLOX
    if _parse_bool(values.get("route53_enabled")):
        return DNS_TYPE_ROUTE53
    if _parse_bool(values.get("ns1_enabled")):
        return DNS_TYPE_NS1
    if _parse_bool(values.get("coredns_exposed")):
        return DNS_TYPE_COREDNS
    return DNS_TYPE_NO_EDGE_DNS


# =============================================================================
# Config
# =============================================================================


@dataclass(frozen=True)
class InfobloxConfig:
    """Infoblox WAPI connection settings."""

    grid_host: str = ""
    wapi_version: str = "2.3.1"
    wapi_port: int = 443
    username: str = ""
    password: str = ""
    ssl_verify: bool = True


@dataclass(frozen=True)
class Config:
    """Everything the controller core needs, injected at construction."""

    k8gb_namespace: str = "k8gb"
    watch_namespace: str = ""
    edge_dns_server: str = ""
    edge_dns_zone: str = ""
    dns_zone: str = ""
    cluster_geo_tag: str = ""
    ext_clusters_geo_tags: List[str] = field(default_factory=list)
    edge_dns_type: str = DNS_TYPE_NO_EDGE_DNS
    coredns_exposed: bool = False
    reconcile_requeue_seconds: int = 30
    split_brain_threshold_seconds: int = 300
    fake_dns_enabled: bool = False
    infoblox: InfobloxConfig = field(default_factory=InfobloxConfig)
    sync_mode: str = "watch"
    poll_interval_seconds: int = 30
    log_level: str = "INFO"

    @property
    def split_brain_threshold(self) -> timedelta:
        return timedelta(seconds=self.split_brain_threshold_seconds)

    @property
    def ns_server_name(self) -> str:
        """Nameserver name of this cluster, e.g. gslb-ns-cloud-example-com-eu.example.com."""
        return self._ns_name(self.cluster_geo_tag)

    @property
    def ns_server_names_ext(self) -> List[str]:
        """Nameserver names of the peer clusters, in configured order."""
        return [self._ns_name(tag) for tag in self.ext_clusters_geo_tags]

    def heartbeat_fqdn(self, geo_tag: str) -> str:
        """FQDN of the split-brain TXT marker maintained by cluster `geo_tag`."""
        return f"{geo_tag}-heartbeat-{self.dns_zone}.{self.edge_dns_zone}"

    def _ns_name(self, geo_tag: str) -> str:
        dns_zone_into_ns = self.dns_zone.replace(".", "-")
        return f"gslb-ns-{dns_zone_into_ns}-{geo_tag}.{self.edge_dns_zone}"

    def validate(self) -> List[str]:
        """Return a list of configuration problems; empty means valid."""
        errors: List[str] = []
        if self.edge_dns_type not in DNS_TYPES:
            errors.append(
                f"Unsupported EDGE_DNS_TYPE: '{self.edge_dns_type}'. "
                f"Supported: {', '.join(DNS_TYPES)}"
            )
        if not self.k8gb_namespace:
            errors.append("POD_NAMESPACE must not be empty")
        if self.edge_dns_type != DNS_TYPE_NO_EDGE_DNS:
            if not self.edge_dns_server:
                errors.append(f"EDGE_DNS_SERVER is required when EDGE_DNS_TYPE={self.edge_dns_type}")
            if not self.edge_dns_zone:
                errors.append(f"EDGE_DNS_ZONE is required when EDGE_DNS_TYPE={self.edge_dns_type}")
            if not self.dns_zone:
                errors.append(f"DNS_ZONE is required when EDGE_DNS_TYPE={self.edge_dns_type}")
            if not self.cluster_geo_tag:
                errors.append(f"CLUSTER_GEO_TAG is required when EDGE_DNS_TYPE={self.edge_dns_type}")
        if self.cluster_geo_tag and self.cluster_geo_tag in self.ext_clusters_geo_tags:
            errors.append(
                f"CLUSTER_GEO_TAG '{self.cluster_geo_tag}' must not be listed in EXT_GSLB_CLUSTERS_GEO_TAGS"
            )
        if self.reconcile_requeue_seconds <= 0:
            errors.append("RECONCILE_REQUEUE_SECONDS must be positive")
        if self.split_brain_threshold_seconds <= 0:
            errors.append("SPLIT_BRAIN_THRESHOLD_SECONDS must be positive")
        if self.sync_mode not in SYNC_MODES:
            errors.append(f"Invalid SYNC_MODE: {self.sync_mode}. Use 'once' or 'watch'")
        return errors

    # -------------------------------------------------------------------------
    # Loaders
    # -------------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "Config":
        """Build a Config from flat lower-case keys (env or YAML)."""
        infoblox_values: Dict[str, Any] = dict(values.get("infoblox") or {})
        for key in ("grid_host", "wapi_version", "wapi_port", "username", "password", "ssl_verify"):
            flat = values.get(f"infoblox_{key}")
            if flat is not None and key not in infoblox_values:
                infoblox_values[key] = flat
        flat_values = dict(values)
        flat_values.setdefault("infoblox_grid_host", infoblox_values.get("grid_host"))

        return cls(
            k8gb_namespace=str(values.get("k8gb_namespace") or "k8gb").strip(),
            watch_namespace=str(values.get("watch_namespace") or "").strip(),
            edge_dns_server=str(values.get("edge_dns_server") or "").strip(),
            edge_dns_zone=str(values.get("edge_dns_zone") or "").strip(),
            dns_zone=str(values.get("dns_zone") or "").strip(),
            cluster_geo_tag=str(values.get("cluster_geo_tag") or "").strip(),
            ext_clusters_geo_tags=_parse_list(values.get("ext_clusters_geo_tags")),
            edge_dns_type=_derive_dns_type(flat_values),
            coredns_exposed=_parse_bool(values.get("coredns_exposed")),
            reconcile_requeue_seconds=_parse_int(values.get("reconcile_requeue_seconds"), default=30),
            split_brain_threshold_seconds=_parse_int(
                values.get("split_brain_threshold_seconds"), default=300
            ),
            fake_dns_enabled=_parse_bool(values.get("fake_dns_enabled")),
            infoblox=InfobloxConfig(
                grid_host=str(infoblox_values.get("grid_host") or "").strip(),
                wapi_version=str(infoblox_values.get("wapi_version") or "2.3.1").strip(),
                wapi_port=_parse_int(infoblox_values.get("wapi_port"), default=443),
                username=str(infoblox_values.get("username") or "").strip(),
                password=str(infoblox_values.get("password") or ""),
                ssl_verify=_parse_bool(infoblox_values.get("ssl_verify"), default=True),
            ),
            sync_mode=str(values.get("sync_mode") or "watch").lower().strip(),
            poll_interval_seconds=_parse_int(values.get("poll_interval_seconds"), default=30),
            log_level=str(values.get("log_level") or "INFO").upper().strip(),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {
            "k8gb_namespace": env.get("POD_NAMESPACE"),
            "watch_namespace": env.get("WATCH_NAMESPACE"),
            "edge_dns_server": env.get("EDGE_DNS_SERVER"),
            "edge_dns_zone": env.get("EDGE_DNS_ZONE"),
            "dns_zone": env.get("DNS_ZONE"),
            "cluster_geo_tag": env.get("CLUSTER_GEO_TAG"),
            "ext_clusters_geo_tags": env.get("EXT_GSLB_CLUSTERS_GEO_TAGS"),
            "edge_dns_type": env.get("EDGE_DNS_TYPE"),
            "route53_enabled": env.get("ROUTE53_ENABLED"),
            "ns1_enabled": env.get("NS1_ENABLED"),
            "coredns_exposed": env.get("COREDNS_EXPOSED"),
            "reconcile_requeue_seconds": env.get("RECONCILE_REQUEUE_SECONDS"),
            "split_brain_threshold_seconds": env.get("SPLIT_BRAIN_THRESHOLD_SECONDS"),
            "fake_dns_enabled": env.get("FAKE_DNS_ENABLED"),
            "infoblox_grid_host": env.get("INFOBLOX_GRID_HOST"),
            "infoblox_wapi_version": env.get("INFOBLOX_WAPI_VERSION"),
            "infoblox_wapi_port": env.get("INFOBLOX_WAPI_PORT"),
            "infoblox_username": env.get("EXTERNAL_DNS_INFOBLOX_WAPI_USERNAME"),
            "infoblox_password": env.get("EXTERNAL_DNS_INFOBLOX_WAPI_PASSWORD"),
            "infoblox_ssl_verify": env.get("INFOBLOX_SSL_VERIFY"),
            "sync_mode": env.get("SYNC_MODE"),
            "poll_interval_seconds": env.get("POLL_INTERVAL_SECONDS"),
            "log_level": env.get("LOG_LEVEL"),
        }
        return cls.from_mapping(values)

    @classmethod
    def from_yaml(cls, config_path: str) -> "Config":
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        return cls.from_mapping(data)


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load from GSLB_CONFIG_PATH when that file exists, else from the environment."""
    env = os.environ if environ is None else environ
    config_path = (env.get("GSLB_CONFIG_PATH") or "").strip()
    if config_path and Path(config_path).is_file():
        logger.info(f"Loading configuration from {config_path}")
        return Config.from_yaml(config_path)
    return Config.from_env(env)

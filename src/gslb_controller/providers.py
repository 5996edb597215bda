"""DNS provider interface, implementations and factory.

A provider decides what zone delegation means for one edge DNS backend. The
record shapes and all network access live in `GslbAssistant`; a provider only
composes them. Supported backends:

    - ns1, route53, coredns: DNSEndpoint resources picked up by external-dns
    - infoblox: zone delegation and heartbeat written through the Infoblox WAPI
    - noedgedns: no delegation at all, peers are still resolvable
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from requests.auth import HTTPBasicAuth

from .assistant import GslbAssistant, edge_nameserver, fake_nameserver, split_brain_timestamp
from .config import (
    DNS_TYPE_COREDNS,
    DNS_TYPE_INFOBLOX,
    DNS_TYPE_NO_EDGE_DNS,
    DNS_TYPE_NS1,
    DNS_TYPE_ROUTE53,
    Config,
)
from .errors import ConstructionError, GslbError, PeerResolutionError, PersistenceError
from .k8s import ClusterClient
from .resources import DNSTYPE_ANNOTATION, DNSEndpoint, Endpoint, dns_ttl_seconds

logger = logging.getLogger(__name__)

# =============================================================================
# DNS Provider Interface
# =============================================================================


class DNSProvider(ABC):
    """Abstract base class for edge DNS providers."""

    @abstractmethod
    def create_zone_delegation(self, gslb: Dict[str, Any]) -> None:
        """Publish the delegation of the DNS zone to this cluster's nameserver."""
        pass

    @abstractmethod
    def finalize(self, gslb: Dict[str, Any]) -> None:
        """Remove what create_zone_delegation published. Must be idempotent."""
        pass

    @abstractmethod
    def get_external_targets(self, host: str) -> List[str]:
        """Targets peer clusters publish for `host`.

        Empty means no reachable targets were found; partial failures are
        logged, never returned.
        """
        pass

    @abstractmethod
    def gslb_ingress_exposed_ips(self, gslb: Dict[str, Any]) -> List[str]:
        pass

    @abstractmethod
    def save_dns_endpoint(self, gslb: Dict[str, Any], endpoint: DNSEndpoint) -> None:
        pass


class _AssistedProvider(DNSProvider):
    """Shared plumbing of the providers that delegate to a GslbAssistant."""

    def __init__(self, config: Config, assistant: GslbAssistant):
        self._config = config
        self._assistant = assistant

    def get_external_targets(self, host: str) -> List[str]:
        try:
            return self._assistant.get_external_targets(host, self._config.ns_server_names_ext)
        except PeerResolutionError as e:
            logger.warning(
                f"Discarding {len(e.targets)} partially resolved external targets for {host}: {e}"
            )
            return []

    def gslb_ingress_exposed_ips(self, gslb: Dict[str, Any]) -> List[str]:
        return self._assistant.gslb_ingress_exposed_ips(gslb)

    def save_dns_endpoint(self, gslb: Dict[str, Any], endpoint: DNSEndpoint) -> None:
        self._assistant.save_dns_endpoint(gslb.get("metadata", {}).get("namespace", ""), endpoint)

    def _exposed_ips(self, gslb: Dict[str, Any]) -> List[str]:
        if self._config.coredns_exposed:
            return self._assistant.coredns_exposed_ips()
        return self._assistant.gslb_ingress_exposed_ips(gslb)


# =============================================================================
# external-dns backed providers (ns1, route53, coredns)
# =============================================================================


class ExternalDNSProvider(_AssistedProvider):
    """Publishes NS delegation and nameserver A records as a DNSEndpoint."""

    def __init__(self, dns_type: str, config: Config, assistant: GslbAssistant):
        super().__init__(config, assistant)
        self._dns_type = dns_type
        self.endpoint_name = f"k8gb-ns-{dns_type}"

    def __str__(self) -> str:
        return self._dns_type.upper()

    def create_zone_delegation(self, gslb: Dict[str, Any]) -> None:
        logger.info(f"Creating/Updating DNSEndpoint CRDs for {self}...")
        # resolve first: a failure must leave the existing record untouched
        ns_server_ips = self._exposed_ips(gslb)
        endpoint = self.delegation_endpoint(dns_ttl_seconds(gslb), ns_server_ips)
        self._assistant.save_dns_endpoint(self._config.k8gb_namespace, endpoint)

    def delegation_endpoint(self, ttl: int, ns_server_ips: List[str]) -> DNSEndpoint:
        ns_server_list = sorted({self._config.ns_server_name, *self._config.ns_server_names_ext})
        return DNSEndpoint(
            name=self.endpoint_name,
            namespace=self._config.k8gb_namespace,
            annotations={DNSTYPE_ANNOTATION: self._dns_type},
            endpoints=[
                Endpoint(
                    dns_name=self._config.dns_zone,
                    record_type="NS",
                    record_ttl=ttl,
                    targets=ns_server_list,
                ),
                Endpoint(
                    dns_name=self._config.ns_server_name,
                    record_type="A",
                    record_ttl=ttl,
                    targets=sorted(set(ns_server_ips)),
                ),
            ],
        )

    def finalize(self, gslb: Dict[str, Any]) -> None:
        self._assistant.remove_endpoint(self.endpoint_name)


# =============================================================================
# No edge DNS
# =============================================================================


class NoEdgeDNSProvider(_AssistedProvider):
    """Used when nothing upstream delegates the zone to the clusters."""

    def __str__(self) -> str:
        return DNS_TYPE_NO_EDGE_DNS.upper()

    def create_zone_delegation(self, gslb: Dict[str, Any]) -> None:
        pass

    def finalize(self, gslb: Dict[str, Any]) -> None:
        pass


# =============================================================================
# Infoblox
# =============================================================================


class InfobloxProvider(_AssistedProvider):
    """Maintains a delegated zone and this cluster's heartbeat TXT in Infoblox.

    Peer clusters write their own `delegate_to` entries into the same
    delegated zone. Entries of peers whose heartbeat is stale are dropped on
    every sync, which is how a partitioned cluster stops receiving traffic.
    """

    def __init__(self, config: Config, assistant: GslbAssistant, session: Optional[requests.Session] = None):
        super().__init__(config, assistant)
        settings = config.infoblox
        missing = [
            env
            for env, value in (
                ("INFOBLOX_GRID_HOST", settings.grid_host),
                ("EXTERNAL_DNS_INFOBLOX_WAPI_USERNAME", settings.username),
                ("EXTERNAL_DNS_INFOBLOX_WAPI_PASSWORD", settings.password),
            )
            if not value
        ]
        if missing:
            raise ConstructionError(f"Infoblox provider requires {', '.join(missing)}")

        self._url = f"https://{settings.grid_host}:{settings.wapi_port}/wapi/v{settings.wapi_version}"
        self._session = session or requests.Session()
        self._session.auth = HTTPBasicAuth(settings.username, settings.password)
        self._session.verify = settings.ssl_verify
        self._timeout = 10

        try:
            response = self._session.get(f"{self._url}/grid", timeout=self._timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ConstructionError(f"Failed to connect to Infoblox grid {settings.grid_host}: {e}") from e
        logger.info(f"Infoblox connection successful ({settings.grid_host})")

    def __str__(self) -> str:
        return DNS_TYPE_INFOBLOX.upper()

    def create_zone_delegation(self, gslb: Dict[str, Any]) -> None:
        local_name = self._config.ns_server_name
        local_ips = self._exposed_ips(gslb)
        ttl = dns_ttl_seconds(gslb)
        local_entries = [{"name": local_name, "address": ip} for ip in sorted(local_ips)]

        zone = self._find_one("zone_delegated", {"fqdn": self._config.dns_zone})
        if zone:
            delegate_to = self._healthy_peer_entries(zone.get("delegate_to") or []) + local_entries
            logger.info(f"Updating delegated zone {self._config.dns_zone}: {delegate_to}")
            self._request("PUT", zone["_ref"], json={"delegate_to": delegate_to})
        else:
            logger.info(f"Creating delegated zone {self._config.dns_zone}: {local_entries}")
            self._request(
                "POST",
                "zone_delegated",
                json={
                    "fqdn": self._config.dns_zone,
                    "delegate_to": local_entries,
                    "delegated_ttl": ttl,
                    "use_delegated_ttl": ttl > 0,
                },
            )

        self._save_heartbeat(ttl)

    def finalize(self, gslb: Dict[str, Any]) -> None:
        zone = self._find_one("zone_delegated", {"fqdn": self._config.dns_zone})
        if zone:
            logger.info(f"Deleting delegated zone {self._config.dns_zone}")
            self._request("DELETE", zone["_ref"])
        heartbeat_name = self._config.heartbeat_fqdn(self._config.cluster_geo_tag)
        txt = self._find_one("record:txt", {"name": heartbeat_name})
        if txt:
            logger.info(f"Deleting split brain TXT record {heartbeat_name}")
            self._request("DELETE", txt["_ref"])

    def _healthy_peer_entries(self, current: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        geo_tags = dict(zip(self._config.ns_server_names_ext, self._config.ext_clusters_geo_tags))
        healthy: List[Dict[str, Any]] = []
        for entry in current:
            geo_tag = geo_tags.get(entry.get("name", ""))
            if geo_tag is None:
                # local entries are rewritten, unknown ones dropped
                continue
            try:
                self._assistant.inspect_txt_threshold(
                    self._config.heartbeat_fqdn(geo_tag), self._config.split_brain_threshold
                )
            except GslbError as e:
                logger.warning(f"Split brain detected, removing {entry.get('name')} from delegation: {e}")
                continue
            healthy.append({"name": entry["name"], "address": entry.get("address", "")})
        return healthy

    def _save_heartbeat(self, ttl: int) -> None:
        name = self._config.heartbeat_fqdn(self._config.cluster_geo_tag)
        text = split_brain_timestamp()
        txt = self._find_one("record:txt", {"name": name})
        if txt:
            self._request("PUT", txt["_ref"], json={"text": text})
        else:
            self._request("POST", "record:txt", json={"name": name, "text": text, "ttl": ttl})
        logger.info(f"Split brain TXT record {name} set to {text}")

    def _find_one(self, obj_type: str, params: Dict[str, str]) -> Optional[Dict[str, Any]]:
        found = self._request("GET", obj_type, params=params)
        if isinstance(found, list) and found:
            return found[0]
        return None

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._session.request(method, f"{self._url}/{path}", timeout=self._timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Infoblox {method} {path} failed: {e}")
            raise PersistenceError(f"Infoblox {method} {path} failed: {e}") from e
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PersistenceError(f"Infoblox {method} {path} returned invalid JSON: {e}") from e


# =============================================================================
# Provider Factory
# =============================================================================


class ProviderFactory:
    """Builds the DNS provider configured by EDGE_DNS_TYPE."""

    def __init__(self, client: Optional[ClusterClient], config: Optional[Config]):
        if client is None:
            raise ConstructionError("nil client")
        if config is None:
            raise ConstructionError("nil config")
        self._client = client
        self._config = config

    def assistant(self) -> GslbAssistant:
        nameserver = fake_nameserver if self._config.fake_dns_enabled else edge_nameserver
        return GslbAssistant(
            self._client,
            self._config.k8gb_namespace,
            self._config.edge_dns_server,
            nameserver=nameserver,
        )

    def provider(self) -> DNSProvider:
        assistant = self.assistant()
        dns_type = self._config.edge_dns_type
        if dns_type in (DNS_TYPE_NS1, DNS_TYPE_ROUTE53, DNS_TYPE_COREDNS):
            return ExternalDNSProvider(dns_type, self._config, assistant)
        if dns_type == DNS_TYPE_INFOBLOX:
            return InfobloxProvider(self._config, assistant)
        if dns_type == DNS_TYPE_NO_EDGE_DNS:
            return NoEdgeDNSProvider(self._config, assistant)
        raise ConstructionError(f"Unsupported edge DNS type: '{dns_type}'")

"""Cluster-facing assistant.

`GslbAssistant` is the only place that talks to the outside world: the
cluster API (through a `ClusterClient`) and edge DNS servers (through
dnspython). Every call re-reads ground truth; nothing is cached and nothing is
retried here. Retry timing is owned by the reconcile outcome policy.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import dns.exception
import dns.inet
import dns.message
import dns.name
import dns.query
import dns.rdatatype
import dns.resolver
import yaml
from kubernetes.client.rest import ApiException

from .errors import (
    NotFoundError,
    PeerResolutionError,
    PersistenceError,
    QueryError,
    StaleOrMissingRecordError,
)
from .k8s import ClusterClient
from .resources import (
    COREDNS_EXT_SERVICE_NAME,
    DNSENDPOINT_KIND,
    INGRESS_KIND,
    SERVICE_KIND,
    DNSEndpoint,
    load_balancer_ingress,
    name_of,
    namespace_of,
)

logger = logging.getLogger(__name__)

SPLIT_BRAIN_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"
FAKE_DNS_ADDRESS = ("127.0.0.1", 7753)
DNS_PORT = 53

_DNS_ERRORS = (dns.exception.DNSException, OSError, ValueError)

# (server) -> (address, port)
NameserverSelector = Callable[[str], Tuple[str, int]]


def edge_nameserver(server: str) -> Tuple[str, int]:
    """Query the given server on the standard DNS port."""
    return server, DNS_PORT


def fake_nameserver(server: str) -> Tuple[str, int]:
    """Query the loopback test resolver, whatever server was asked for."""
    return FAKE_DNS_ADDRESS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GslbAssistant:
    """Wraps cluster API reads/writes and outbound DNS queries for one controller."""

    def __init__(
        self,
        client: ClusterClient,
        k8gb_namespace: str,
        edge_dns_server: str,
        nameserver: NameserverSelector = edge_nameserver,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._client = client
        self._k8gb_namespace = k8gb_namespace
        self._edge_dns_server = edge_dns_server
        self._nameserver = nameserver
        self._clock = clock

    # -------------------------------------------------------------------------
    # Exposed addresses
    # -------------------------------------------------------------------------

    def coredns_exposed_ips(self) -> List[str]:
        """IPs of the LoadBalancer in front of the edge-facing CoreDNS."""
        try:
            service = self._client.get(SERVICE_KIND, self._k8gb_namespace, COREDNS_EXT_SERVICE_NAME)
        except NotFoundError:
            logger.info(f"Can't find {self._k8gb_namespace}/{COREDNS_EXT_SERVICE_NAME} service")
            raise
        except ApiException as e:
            raise PersistenceError(
                f"Failed to get service {self._k8gb_namespace}/{COREDNS_EXT_SERVICE_NAME}: {e}"
            ) from e

        entries = load_balancer_ingress(service)
        if not entries:
            message = f"no Ingress LoadBalancer entries found for {COREDNS_EXT_SERVICE_NAME} service"
            logger.info(message)
            raise NotFoundError(SERVICE_KIND, self._k8gb_namespace, COREDNS_EXT_SERVICE_NAME, message)

        entry = entries[0]
        if entry.get("hostname"):
            try:
                return self.dig(entry["hostname"])
            except QueryError as e:
                logger.info(
                    f"Can't dig {COREDNS_EXT_SERVICE_NAME} service loadbalancer fqdn "
                    f"{entry['hostname']} ({e})"
                )
                raise
        if entry.get("ip"):
            return [entry["ip"]]
        message = f"LoadBalancer entry of {COREDNS_EXT_SERVICE_NAME} service has neither ip nor hostname"
        logger.info(message)
        raise NotFoundError(SERVICE_KIND, self._k8gb_namespace, COREDNS_EXT_SERVICE_NAME, message)

    def gslb_ingress_exposed_ips(self, gslb: Dict[str, Any]) -> List[str]:
        """IPs exposed by the Ingress derived from `gslb`; hostnames are dug."""
        namespace, name = namespace_of(gslb), name_of(gslb)
        try:
            ingress = self._client.get(INGRESS_KIND, namespace, name)
        except NotFoundError:
            logger.info(f"Can't find gslb Ingress: {namespace}/{name}")
            raise
        except ApiException as e:
            raise PersistenceError(f"Failed to get Ingress {namespace}/{name}: {e}") from e

        ips: List[str] = []
        for entry in load_balancer_ingress(ingress):
            if entry.get("ip"):
                ips.append(entry["ip"])
            if entry.get("hostname"):
                try:
                    ips.extend(self.dig(entry["hostname"]))
                except QueryError as e:
                    logger.info(f"Dig error: {e}")
                    raise
        if not ips:
            # load balancer not assigned yet
            message = f"no Ingress LoadBalancer entries found for {namespace}/{name} Ingress"
            logger.info(message)
            raise NotFoundError(INGRESS_KIND, namespace, name, message)
        return ips

    # -------------------------------------------------------------------------
    # DNSEndpoint persistence
    # -------------------------------------------------------------------------

    def save_dns_endpoint(self, namespace: str, endpoint: DNSEndpoint) -> None:
        """Create the DNSEndpoint, or replace the spec of the existing one."""
        manifest = endpoint.to_manifest()
        manifest["metadata"]["namespace"] = namespace
        try:
            found = self._client.get(DNSENDPOINT_KIND, namespace, endpoint.name)
        except NotFoundError:
            logger.info(f"Creating a new DNSEndpoint:\n{yaml.safe_dump(manifest, sort_keys=False)}")
            try:
                self._client.create(manifest)
            except ApiException as e:
                logger.error(
                    f"Failed to create new DNSEndpoint DNSEndpoint.Namespace: {namespace} "
                    f"DNSEndpoint.Name {endpoint.name}: {e}"
                )
                raise PersistenceError(
                    f"Failed to create DNSEndpoint {namespace}/{endpoint.name}: {e}"
                ) from e
            return
        except ApiException as e:
            logger.error(f"Failed to get DNSEndpoint {namespace}/{endpoint.name}: {e}")
            raise PersistenceError(f"Failed to get DNSEndpoint {namespace}/{endpoint.name}: {e}") from e

        found["spec"] = manifest["spec"]
        try:
            self._client.update(found)
        except ApiException as e:
            logger.error(
                f"Failed to update DNSEndpoint DNSEndpoint.Namespace {namespace} "
                f"DNSEndpoint.Name {endpoint.name}: {e}"
            )
            raise PersistenceError(f"Failed to update DNSEndpoint {namespace}/{endpoint.name}: {e}") from e

    def remove_endpoint(self, endpoint_name: str) -> None:
        """Delete a DNSEndpoint from the controller namespace; absence is success."""
        logger.info(f"Removing endpoint {self._k8gb_namespace}.{endpoint_name}")
        try:
            found = self._client.get(DNSENDPOINT_KIND, self._k8gb_namespace, endpoint_name)
            self._client.delete(found)
        except NotFoundError as e:
            logger.info(f"{e}")
        except ApiException as e:
            raise PersistenceError(
                f"Failed to remove DNSEndpoint {self._k8gb_namespace}/{endpoint_name}: {e}"
            ) from e

    # -------------------------------------------------------------------------
    # DNS queries
    # -------------------------------------------------------------------------

    def dig(self, fqdn: str) -> List[str]:
        """A records of `fqdn` as answered by the edge DNS server."""
        if not fqdn:
            raise QueryError("empty fqdn")
        server = self._nameserver(self._edge_dns_server)
        try:
            response = self._query(fqdn, dns.rdatatype.A, server)
        except _DNS_ERRORS as e:
            raise QueryError(f"dig {fqdn} @{server[0]}:{server[1]}: {e}") from e
        ips = _a_records(response)
        if not ips:
            raise QueryError(f"dig {fqdn} @{server[0]}:{server[1]}: no A records")
        return ips

    def inspect_txt_threshold(
        self,
        fqdn: str,
        split_brain_threshold: timedelta,
        use_fake_resolver: bool = False,
    ) -> None:
        """Check the split-brain TXT marker at `fqdn`.

        Returns None when the marker exists, parses and is not older than
        `split_brain_threshold`. Raises StaleOrMissingRecordError otherwise.
        """
        server = self._select(use_fake_resolver)(self._edge_dns_server)
        ns = f"{server[0]}:{server[1]}"
        try:
            response = self._query(fqdn, dns.rdatatype.TXT, server)
        except _DNS_ERRORS as e:
            logger.info(f"Error contacting EdgeDNS server ({ns}) for TXT split brain record: ({e})")
            raise StaleOrMissingRecordError(
                f"Can't query split brain TXT record {fqdn} at EdgeDNS server({ns}): {e}"
            ) from e

        timestamp = ""
        for rrset in response.answer:
            if rrset.rdtype != dns.rdatatype.TXT:
                continue
            raw = rrset.to_text().splitlines()[0]
            logger.info(f"Split brain TXT raw record: {raw}")
            # presentation form: name ttl class type "text", space separated by dnspython
            fields = raw.split(None, 4)
            if len(fields) == 5:
                timestamp = fields[4].strip('"')
            break

        if not timestamp:
            raise StaleOrMissingRecordError(
                f"Can't find split brain TXT record at EdgeDNS server({ns}) and record {fqdn}"
            )

        logger.info(f"Split brain TXT raw time stamp: {timestamp}")
        try:
            time_from_txt = datetime.strptime(timestamp, SPLIT_BRAIN_TIMESTAMP_FORMAT)
        except ValueError as e:
            raise StaleOrMissingRecordError(
                f"Can't parse split brain TXT record {fqdn} time stamp '{timestamp}': {e}"
            ) from e

        logger.info(f"Split brain TXT parsed time stamp: {time_from_txt}")
        diff = self._clock() - time_from_txt
        logger.info(f"Split brain TXT time diff: {diff}")
        if diff > split_brain_threshold:
            raise StaleOrMissingRecordError(
                f"Split brain TXT record {fqdn} expired the time threshold: ({split_brain_threshold})"
            )

    def get_external_targets(
        self,
        host: str,
        ext_servers: Sequence[str],
        use_fake_resolver: bool = False,
    ) -> List[str]:
        """Targets published by peer clusters for `host`.

        Peers are queried one at a time for ``localtargets-<host>.``. The first
        unreachable peer aborts the walk with PeerResolutionError, whose
        `targets` holds what earlier peers returned.
        """
        targets: List[str] = []
        local_targets_fqdn = f"localtargets-{host.rstrip('.')}."
        select = self._select(use_fake_resolver)
        for cluster in ext_servers:
            logger.info(f"Adding external Gslb targets from {cluster} cluster...")
            server = select(cluster)
            try:
                response = self._query(local_targets_fqdn, dns.rdatatype.A, server)
            except _DNS_ERRORS as e:
                logger.info(f"Error contacting external Gslb cluster({cluster}) : ({e})")
                raise PeerResolutionError(
                    f"Error contacting external Gslb cluster({cluster}) for {local_targets_fqdn}: {e}",
                    targets,
                ) from e
            cluster_targets = _a_records(response)
            if cluster_targets:
                targets.extend(cluster_targets)
                logger.info(f"Added external {cluster_targets} Gslb targets from {cluster} cluster")
        return targets

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _select(self, use_fake_resolver: bool) -> NameserverSelector:
        return fake_nameserver if use_fake_resolver else self._nameserver

    def _query(self, fqdn: str, rdtype: dns.rdatatype.RdataType, server: Tuple[str, int]) -> dns.message.Message:
        query = dns.message.make_query(dns.name.from_text(fqdn), rdtype)
        address, port = server
        return dns.query.udp(query, _server_address(address), port=port)


def _server_address(server: str) -> str:
    """dnspython needs an address literal; resolve server names via the system resolver."""
    if dns.inet.is_address(server):
        return server
    answer = dns.resolver.resolve(server, "A")
    return answer[0].address


def _a_records(response: dns.message.Message) -> List[str]:
    ips: List[str] = []
    for rrset in response.answer:
        if rrset.rdtype != dns.rdatatype.A:
            continue
        ips.extend(rdata.address for rdata in rrset)
    return ips


def split_brain_timestamp(now: Optional[datetime] = None) -> str:
    """Marker value for `now` (default: current UTC time)."""
    return (now or _utcnow()).strftime(SPLIT_BRAIN_TIMESTAMP_FORMAT)

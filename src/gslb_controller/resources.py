"""Resource kinds handled by the controller and helpers to build their manifests.

Objects travel through the controller as plain manifest dicts, the same shape
the Kubernetes API returns. DNSEndpoint records are modelled as dataclasses
because the controller synthesizes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import OwnerReferenceError

# =============================================================================
# Kinds and well-known names
# =============================================================================

GSLB_GROUP = "k8gb.absa.oss"
GSLB_VERSION = "v1beta1"
GSLB_PLURAL = "gslbs"
GSLB_KIND = "Gslb"

DNSENDPOINT_GROUP = "externaldns.k8s.io"
DNSENDPOINT_VERSION = "v1alpha1"
DNSENDPOINT_PLURAL = "dnsendpoints"
DNSENDPOINT_KIND = "DNSEndpoint"

INGRESS_API_VERSION = "networking.k8s.io/v1"
INGRESS_KIND = "Ingress"
SERVICE_KIND = "Service"

STRATEGY_ANNOTATION = "k8gb.io/strategy"
PRIMARY_GEOTAG_ANNOTATION = "k8gb.io/primary-geotag"
DNSTYPE_ANNOTATION = "k8gb.absa.oss/dnstype"
GSLB_FINALIZER = "k8gb.absa.oss/finalizer"

COREDNS_EXT_SERVICE_NAME = "k8gb-coredns-lb"


# =============================================================================
# Manifest helpers
# =============================================================================


def meta(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Return obj['metadata'], creating it if missing."""
    return obj.setdefault("metadata", {})


def name_of(obj: Dict[str, Any]) -> str:
    return str(obj.get("metadata", {}).get("name") or "")


def namespace_of(obj: Dict[str, Any]) -> str:
    return str(obj.get("metadata", {}).get("namespace") or "")


def strategy_of(gslb: Dict[str, Any]) -> Dict[str, Any]:
    return gslb.get("spec", {}).get("strategy") or {}


def dns_ttl_seconds(gslb: Dict[str, Any]) -> int:
    return int(strategy_of(gslb).get("dnsTtlSeconds") or 0)


def ingress_hosts(ingress_spec: Dict[str, Any]) -> List[str]:
    """Hosts declared by the rules of an Ingress spec, in declaration order."""
    hosts: List[str] = []
    for rule in ingress_spec.get("rules") or []:
        host = rule.get("host") if isinstance(rule, dict) else None
        if host and host not in hosts:
            hosts.append(host)
    return hosts


def load_balancer_ingress(obj: Dict[str, Any]) -> List[Dict[str, Any]]:
    """status.loadBalancer.ingress entries of a Service or an Ingress."""
    entries = (obj.get("status") or {}).get("loadBalancer", {}).get("ingress") or []
    return [e for e in entries if isinstance(e, dict)]


def set_controller_reference(owner: Dict[str, Any], obj: Dict[str, Any]) -> None:
    """Attach a controller owner reference to `obj`, pointing at `owner`.

    Raises OwnerReferenceError when the owner is not a complete persisted
    object, when the namespaces differ, or when a different controller already
    owns `obj`.
    """
    owner_meta = owner.get("metadata") or {}
    api_version = owner.get("apiVersion")
    kind = owner.get("kind")
    name = owner_meta.get("name")
    uid = owner_meta.get("uid")
    missing = [k for k, v in (("apiVersion", api_version), ("kind", kind), ("name", name), ("uid", uid)) if not v]
    if missing:
        raise OwnerReferenceError(
            f"cannot use {kind or 'object'} {name or '<unnamed>'} as owner: missing {', '.join(missing)}"
        )

    owner_ns = owner_meta.get("namespace") or ""
    obj_ns = namespace_of(obj)
    if owner_ns and owner_ns != obj_ns:
        raise OwnerReferenceError(
            f"cross-namespace owner references are disallowed, owner's namespace {owner_ns}, "
            f"obj's namespace {obj_ns}"
        )

    ref = {
        "apiVersion": api_version,
        "kind": kind,
        "name": name,
        "uid": uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }
    refs: List[Dict[str, Any]] = meta(obj).setdefault("ownerReferences", [])
    for i, existing in enumerate(refs):
        if not existing.get("controller"):
            continue
        if existing.get("uid") != uid:
            raise OwnerReferenceError(
                f"object {obj_ns}/{name_of(obj)} is already owned by another "
                f"{existing.get('kind')} controller {existing.get('name')}"
            )
        refs[i] = ref
        return
    refs.append(ref)


# =============================================================================
# DNSEndpoint
# =============================================================================


@dataclass(frozen=True)
class Endpoint:
    """One DNS record set declared by a DNSEndpoint."""

    dns_name: str
    record_type: str
    record_ttl: int = 0
    targets: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dnsName": self.dns_name,
            "recordTTL": self.record_ttl,
            "recordType": self.record_type,
            "targets": list(self.targets),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Endpoint":
        return cls(
            dns_name=str(data.get("dnsName") or ""),
            record_type=str(data.get("recordType") or ""),
            record_ttl=int(data.get("recordTTL") or 0),
            targets=[str(t) for t in data.get("targets") or []],
        )


@dataclass
class DNSEndpoint:
    """The externaldns.k8s.io DNSEndpoint custom resource."""

    name: str
    namespace: str
    endpoints: List[Endpoint] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None

    @property
    def spec(self) -> Dict[str, Any]:
        return {"endpoints": [e.to_dict() for e in self.endpoints]}

    def to_manifest(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": f"{DNSENDPOINT_GROUP}/{DNSENDPOINT_VERSION}",
            "kind": DNSENDPOINT_KIND,
            "metadata": metadata,
            "spec": self.spec,
        }

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "DNSEndpoint":
        metadata = manifest.get("metadata") or {}
        return cls(
            name=str(metadata.get("name") or ""),
            namespace=str(metadata.get("namespace") or ""),
            endpoints=[Endpoint.from_dict(e) for e in (manifest.get("spec") or {}).get("endpoints") or []],
            annotations=dict(metadata.get("annotations") or {}),
            resource_version=metadata.get("resourceVersion"),
        )

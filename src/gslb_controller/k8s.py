"""Cluster API access.

The controller core reads and writes objects only by exact kind, namespace
and name through the narrow `ClusterClient` interface. `KubernetesClusterClient`
implements it on top of the official `kubernetes` client.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException

from .errors import NotFoundError
from .resources import (
    DNSENDPOINT_GROUP,
    DNSENDPOINT_KIND,
    DNSENDPOINT_PLURAL,
    DNSENDPOINT_VERSION,
    GSLB_GROUP,
    GSLB_KIND,
    GSLB_PLURAL,
    GSLB_VERSION,
    INGRESS_KIND,
    SERVICE_KIND,
    name_of,
    namespace_of,
)

logger = logging.getLogger(__name__)

_CUSTOM_KINDS = {
    GSLB_KIND: (GSLB_GROUP, GSLB_VERSION, GSLB_PLURAL),
    DNSENDPOINT_KIND: (DNSENDPOINT_GROUP, DNSENDPOINT_VERSION, DNSENDPOINT_PLURAL),
}


class ClusterClient(ABC):
    """Get/Create/Update/Delete by exact name; no list, no watch."""

    @abstractmethod
    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        """Return the object manifest or raise NotFoundError."""
        pass

    @abstractmethod
    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete(self, obj: Dict[str, Any]) -> None:
        pass


class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by the Kubernetes API server."""

    def __init__(self, api_client: k8s_client.ApiClient):
        self._api_client = api_client
        self._custom = k8s_client.CustomObjectsApi(api_client)
        self._networking = k8s_client.NetworkingV1Api(api_client)
        self._core = k8s_client.CoreV1Api(api_client)

    @classmethod
    def from_environment(cls) -> "KubernetesClusterClient":
        """Load in-cluster config, falling back to the local kubeconfig."""
        try:
            k8s_config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes config")
        except k8s_config.ConfigException:
            k8s_config.load_kube_config()
            logger.info("Loaded Kubernetes config from kubeconfig")
        return cls(k8s_client.ApiClient())

    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        try:
            if kind in _CUSTOM_KINDS:
                group, version, plural = _CUSTOM_KINDS[kind]
                return self._custom.get_namespaced_custom_object(group, version, namespace, plural, name)
            if kind == INGRESS_KIND:
                return self._to_dict(self._networking.read_namespaced_ingress(name, namespace), kind)
            if kind == SERVICE_KIND:
                return self._to_dict(self._core.read_namespaced_service(name, namespace), kind)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind, namespace, name) from e
            raise
        raise ValueError(f"Unsupported kind: {kind}")

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = obj.get("kind", "")
        namespace = namespace_of(obj)
        if kind in _CUSTOM_KINDS:
            group, version, plural = _CUSTOM_KINDS[kind]
            return self._custom.create_namespaced_custom_object(group, version, namespace, plural, obj)
        if kind == INGRESS_KIND:
            return self._to_dict(self._networking.create_namespaced_ingress(namespace, obj), kind)
        raise ValueError(f"Unsupported kind for create: {kind}")

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = obj.get("kind", "")
        namespace = namespace_of(obj)
        name = name_of(obj)
        if kind in _CUSTOM_KINDS:
            group, version, plural = _CUSTOM_KINDS[kind]
            return self._custom.replace_namespaced_custom_object(
                group, version, namespace, plural, name, obj
            )
        if kind == INGRESS_KIND:
            return self._to_dict(self._networking.replace_namespaced_ingress(name, namespace, obj), kind)
        raise ValueError(f"Unsupported kind for update: {kind}")

    def delete(self, obj: Dict[str, Any]) -> None:
        kind = obj.get("kind", "")
        namespace = namespace_of(obj)
        name = name_of(obj)
        try:
            if kind in _CUSTOM_KINDS:
                group, version, plural = _CUSTOM_KINDS[kind]
                self._custom.delete_namespaced_custom_object(group, version, namespace, plural, name)
                return
            if kind == INGRESS_KIND:
                self._networking.delete_namespaced_ingress(name, namespace)
                return
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(kind, namespace, name) from e
            raise
        raise ValueError(f"Unsupported kind for delete: {kind}")

    def list_gslbs(self, namespace: str = "") -> List[Dict[str, Any]]:
        """List GSLB resources. Used by the polling driver only."""
        if namespace:
            result = self._custom.list_namespaced_custom_object(
                GSLB_GROUP, GSLB_VERSION, namespace, GSLB_PLURAL
            )
        else:
            result = self._custom.list_cluster_custom_object(GSLB_GROUP, GSLB_VERSION, GSLB_PLURAL)
        return list(result.get("items", []))

    def _to_dict(self, obj: Any, kind: str) -> Dict[str, Any]:
        data = obj if isinstance(obj, dict) else self._api_client.sanitize_for_serialization(obj)
        # typed read responses may omit the type meta
        data.setdefault("kind", kind)
        return data

"""One reconciliation pass for a GSLB resource."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from kubernetes.client.rest import ApiException

from .assistant import GslbAssistant
from .config import Config
from .errors import (
    GslbError,
    NotFoundError,
    OwnerReferenceError,
    PersistenceError,
    QueryError,
    StaleOrMissingRecordError,
)
from .ingress import gslb_ingress, save_ingress
from .k8s import ClusterClient
from .providers import DNSProvider
from .resources import GSLB_FINALIZER, GSLB_KIND, ingress_hosts, meta
from .result import ReconcileResult, ReconcileResultHandler

logger = logging.getLogger(__name__)

# (gslb, {host: targets}) -> None
StrategyHook = Callable[[Dict[str, Any], Dict[str, List[str]]], None]


def log_targets(gslb: Dict[str, Any], targets: Dict[str, List[str]]) -> None:
    name = gslb.get("metadata", {}).get("name")
    for host, host_targets in sorted(targets.items()):
        logger.info(f"Gslb {name}: {host} -> {host_targets}")


class GslbReconciler:
    """Reconciles a single GSLB resource per call.

    The pass is strictly sequential and keeps no state between calls.
    Load-balancing strategy is out of scope: the resolved targets of every
    host are handed to `strategy`.
    """

    def __init__(
        self,
        client: ClusterClient,
        config: Config,
        provider: DNSProvider,
        assistant: GslbAssistant,
        strategy: Optional[StrategyHook] = None,
    ):
        self._client = client
        self._config = config
        self._provider = provider
        self._assistant = assistant
        self._strategy = strategy or log_targets
        self._result = ReconcileResultHandler(config.reconcile_requeue_seconds)

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        result = self._result
        try:
            gslb = self._client.get(GSLB_KIND, namespace, name)
        except NotFoundError:
            logger.info(f"Gslb {namespace}/{name} not found, it was probably deleted")
            return result.stop()
        except ApiException as e:
            return result.requeue_now_with_error(PersistenceError(f"Failed to get Gslb {namespace}/{name}: {e}"))

        finalizers: List[str] = meta(gslb).setdefault("finalizers", [])
        if meta(gslb).get("deletionTimestamp"):
            if GSLB_FINALIZER not in finalizers:
                return result.stop()
            logger.info(f"Finalizing Gslb {namespace}/{name} with {self._provider} provider")
            try:
                self._provider.finalize(gslb)
            except GslbError as e:
                return result.requeue_now_with_error(e)
            finalizers.remove(GSLB_FINALIZER)
            try:
                self._client.update(gslb)
            except ApiException as e:
                return result.requeue_now_with_error(
                    PersistenceError(f"Failed to remove finalizer from Gslb {namespace}/{name}: {e}")
                )
            return result.stop()

        annotations_before = dict(meta(gslb).get("annotations") or {})
        finalizer_added = GSLB_FINALIZER not in finalizers
        if finalizer_added:
            finalizers.append(GSLB_FINALIZER)

        try:
            ingress = gslb_ingress(gslb)
        except OwnerReferenceError as e:
            return result.requeue_now_with_error(e)

        if finalizer_added or meta(gslb).get("annotations") != annotations_before:
            try:
                gslb = self._client.update(gslb)
            except ApiException as e:
                return result.requeue_now_with_error(
                    PersistenceError(f"Failed to update Gslb {namespace}/{name}: {e}")
                )

        try:
            save_ingress(self._client, gslb, ingress)
        except PersistenceError as e:
            return result.requeue_now_with_error(e)

        try:
            self._provider.create_zone_delegation(gslb)
        except (NotFoundError, QueryError) as e:
            # exposed IPs not assigned or not propagated yet
            return result.requeue_delay_with_error(e)
        except GslbError as e:
            return result.requeue_now_with_error(e)

        try:
            local_targets = self._provider.gslb_ingress_exposed_ips(gslb)
        except (NotFoundError, QueryError) as e:
            return result.requeue_delay_with_error(e)
        except GslbError as e:
            return result.requeue_now_with_error(e)

        stale: Optional[StaleOrMissingRecordError] = None
        try:
            self.check_peers_fresh()
        except StaleOrMissingRecordError as e:
            stale = e
            logger.warning(f"Not trusting external targets for Gslb {namespace}/{name}: {e}")

        targets: Dict[str, List[str]] = {}
        for host in ingress_hosts(gslb.get("spec", {}).get("ingress") or {}):
            peer_targets = [] if stale else self._provider.get_external_targets(host)
            targets[host] = list(local_targets) + peer_targets
        self._strategy(gslb, targets)

        if stale:
            return result.requeue_delay_with_error(stale)
        return result.requeue_delay()

    def check_peers_fresh(self) -> None:
        """Raise StaleOrMissingRecordError unless every peer heartbeat is fresh."""
        for geo_tag in self._config.ext_clusters_geo_tags:
            self._assistant.inspect_txt_threshold(
                self._config.heartbeat_fqdn(geo_tag), self._config.split_brain_threshold
            )

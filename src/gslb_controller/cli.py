#!/usr/bin/env python3
"""gslb-controller - DNS based Global Server Load Balancing

Keeps the zone delegation of one cluster published through the configured
edge DNS provider and resolves the targets peer clusters publish, refusing to
trust peers whose split-brain heartbeat is stale.

Supported edge DNS providers:
    - noedgedns: no zone delegation
    - ns1, route53, coredns: DNSEndpoint resources for external-dns
    - infoblox: Infoblox WAPI

See gslb_controller.config for the environment variables.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Tuple

import urllib3
from kubernetes.client.rest import ApiException

from .config import Config, load_config
from .controller import GslbReconciler
from .errors import ConstructionError
from .k8s import KubernetesClusterClient
from .providers import ProviderFactory
from .resources import name_of, namespace_of
from .result import ReconcileResult

logger = logging.getLogger("gslb_controller")

BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 300.0

Key = Tuple[str, str]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def backoff_delay(failures: int) -> float:
    """Exponential backoff for passes that failed without a fixed delay."""
    return min(BACKOFF_BASE_SECONDS * (2 ** max(failures - 1, 0)), BACKOFF_MAX_SECONDS)


@dataclass
class _Schedule:
    due: float = 0.0
    failures: int = 0


class Sweeper:
    """Drives GslbReconciler over every listed GSLB, honouring requeue results."""

    def __init__(
        self,
        reconciler: GslbReconciler,
        lister: Callable[[], Iterable[dict]],
        poll_interval_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._reconciler = reconciler
        self._lister = lister
        self._poll_interval = float(poll_interval_seconds)
        self._clock = clock
        self._schedule: Dict[Key, _Schedule] = {}

    def sweep(self) -> List[Key]:
        """Reconcile every listed GSLB that is due; return the reconciled keys."""
        now = self._clock()
        keys = [(namespace_of(item), name_of(item)) for item in self._lister()]
        for gone in set(self._schedule) - set(keys):
            del self._schedule[gone]

        reconciled: List[Key] = []
        for key in keys:
            entry = self._schedule.setdefault(key, _Schedule())
            if entry.due > now:
                continue
            namespace, name = key
            try:
                result = self._reconciler.reconcile(namespace, name)
            except Exception as e:
                # transport failures of the cluster API surface as plain exceptions
                logger.debug(f"Reconcile of Gslb {namespace}/{name} raised", exc_info=True)
                result = ReconcileResult(requeue=True, error=e)
            reconciled.append(key)
            if result.error is not None:
                entry.failures += 1
                delay = backoff_delay(entry.failures)
                logger.error(f"Reconcile of Gslb {namespace}/{name} failed, retrying in {delay:.0f}s: {result.error}")
            elif result.requeue:
                entry.failures = 0
                delay = result.requeue_after
            else:
                entry.failures = 0
                delay = self._poll_interval
            entry.due = now + delay
        return reconciled

    def next_wakeup(self) -> float:
        """Seconds until the next scheduled pass, capped by the poll interval."""
        if not self._schedule:
            return self._poll_interval
        soonest = min(entry.due for entry in self._schedule.values()) - self._clock()
        return max(1.0, min(soonest, self._poll_interval))


def build(config: Config) -> Tuple[GslbReconciler, KubernetesClusterClient]:
    client = KubernetesClusterClient.from_environment()
    factory = ProviderFactory(client, config)
    provider = factory.provider()
    logger.info(f"DNS Provider: {provider}")
    return GslbReconciler(client, config, provider, factory.assistant()), client


def main():
    """Main entry point."""
    config = load_config()
    configure_logging(config.log_level)

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(error)
        logger.error("Configuration validation failed")
        sys.exit(1)

    logger.info(f"gslb-controller: cluster {config.cluster_geo_tag or '-'} -> {config.edge_dns_type}")
    logger.info(f"DNS zone: {config.dns_zone or '-'} (edge zone {config.edge_dns_zone or '-'})")
    if config.ext_clusters_geo_tags:
        logger.info(f"External clusters: {', '.join(config.ext_clusters_geo_tags)}")
    logger.info(f"Sync mode: {config.sync_mode}")

    try:
        reconciler, client = build(config)
    except ConstructionError as e:
        logger.error(f"Cannot build DNS provider: {e}")
        sys.exit(1)

    sweeper = Sweeper(
        reconciler,
        lambda: client.list_gslbs(config.watch_namespace),
        config.poll_interval_seconds,
    )

    try:
        if config.sync_mode == "once":
            sweeper.sweep()
            return

        logger.info(f"Poll interval: {config.poll_interval_seconds}s")
        while True:
            try:
                sweeper.sweep()
            except (ApiException, urllib3.exceptions.HTTPError) as e:
                logger.error(f"Failed to list Gslb resources: {e}")
            time.sleep(sweeper.next_wakeup())

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

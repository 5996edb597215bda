"""Derive the Ingress exposing a GSLB's workload and keep it in sync."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict

from kubernetes.client.rest import ApiException

from .errors import NotFoundError, PersistenceError
from .k8s import ClusterClient
from .resources import (
    INGRESS_API_VERSION,
    INGRESS_KIND,
    PRIMARY_GEOTAG_ANNOTATION,
    STRATEGY_ANNOTATION,
    meta,
    name_of,
    namespace_of,
    set_controller_reference,
    strategy_of,
)

logger = logging.getLogger(__name__)


def gslb_ingress(gslb: Dict[str, Any]) -> Dict[str, Any]:
    """Build the Ingress owned by `gslb`.

    Stamps the strategy annotations onto `gslb` itself first; the Ingress
    carries a copy of the resulting annotations. Raises OwnerReferenceError
    when the owner reference can't be attached.
    """
    strategy = strategy_of(gslb)
    annotations = meta(gslb).get("annotations") or {}
    annotations[STRATEGY_ANNOTATION] = strategy.get("type", "")
    if strategy.get("primaryGeoTag"):
        annotations[PRIMARY_GEOTAG_ANNOTATION] = strategy["primaryGeoTag"]
    meta(gslb)["annotations"] = annotations

    ingress: Dict[str, Any] = {
        "apiVersion": INGRESS_API_VERSION,
        "kind": INGRESS_KIND,
        "metadata": {
            "name": name_of(gslb),
            "namespace": namespace_of(gslb),
            "annotations": dict(annotations),
        },
        "spec": copy.deepcopy(gslb.get("spec", {}).get("ingress") or {}),
    }
    set_controller_reference(gslb, ingress)
    return ingress


def save_ingress(client: ClusterClient, gslb: Dict[str, Any], ingress: Dict[str, Any]) -> None:
    """Create the Ingress, or overwrite spec and annotations of the existing one."""
    namespace, name = namespace_of(gslb), name_of(gslb)
    try:
        found = client.get(INGRESS_KIND, namespace, name)
    except NotFoundError:
        logger.info(f"Creating a new Ingress Ingress.Namespace={namespace} Ingress.Name={name}")
        try:
            client.create(ingress)
        except ApiException as e:
            logger.error(f"Failed to create new Ingress Ingress.Namespace={namespace} Ingress.Name={name}: {e}")
            raise PersistenceError(f"Failed to create Ingress {namespace}/{name}: {e}") from e
        return
    except ApiException as e:
        logger.error(f"Failed to get Ingress {namespace}/{name}: {e}")
        raise PersistenceError(f"Failed to get Ingress {namespace}/{name}: {e}") from e

    found["spec"] = ingress["spec"]
    meta(found)["annotations"] = ingress["metadata"].get("annotations") or {}
    try:
        client.update(found)
    except ApiException as e:
        logger.error(f"Failed to update Ingress Ingress.Namespace={namespace} Ingress.Name={name}: {e}")
        raise PersistenceError(f"Failed to update Ingress {namespace}/{name}: {e}") from e

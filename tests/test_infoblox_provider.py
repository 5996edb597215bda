"""Unit tests for InfobloxProvider."""

import json
from datetime import timedelta
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import requests

from fakes import NOW, make_config, make_gslb
from gslb_controller.config import InfobloxConfig
from gslb_controller.errors import ConstructionError, NotFoundError, PersistenceError, StaleOrMissingRecordError
from gslb_controller.providers import InfobloxProvider

BASE = "https://grid.example.com:443/wapi/v2.3.1"
EU_NS = "gslb-ns-cloud-example-com-eu.example.com"
US_NS = "gslb-ns-cloud-example-com-us.example.com"
ZA_NS = "gslb-ns-cloud-example-com-za.example.com"
EU_HEARTBEAT = "eu-heartbeat-cloud.example.com.example.com"


def make_response(payload: Any = None, status: int = 200) -> MagicMock:
    response = MagicMock()
    response.content = b"" if payload is None else json.dumps(payload).encode()
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Error")
    return response


class FakeWapi:
    """Minimal in-memory Infoblox WAPI behind a mocked requests.Session."""

    def __init__(self) -> None:
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.session = MagicMock()
        self.session.get.return_value = make_response({"_ref": "grid/1"})
        self.session.request.side_effect = self.request

    def seed(self, obj_type: str, **fields: Any) -> str:
        ref = f"{obj_type}/{len(self.objects) + 1}"
        self.objects[ref] = {"_ref": ref, **fields}
        return ref

    def request(self, method: str, url: str, timeout: Optional[float] = None, params=None, json=None):
        path = url[len(BASE) + 1:]
        self.calls.append((method, path, params, json))
        if method == "GET":
            matches = [
                obj
                for ref, obj in self.objects.items()
                if ref.startswith(f"{path}/") and all(obj.get(k) == v for k, v in (params or {}).items())
            ]
            return make_response(matches)
        if method == "POST":
            return make_response(self.seed(path, **json))
        if method == "PUT":
            self.objects[path].update(json)
            return make_response(path)
        if method == "DELETE":
            del self.objects[path]
            return make_response(path)
        raise AssertionError(method)

    def of_type(self, obj_type: str) -> List[Dict[str, Any]]:
        return [obj for ref, obj in self.objects.items() if ref.startswith(f"{obj_type}/")]


def make_provider(wapi: FakeWapi, assistant: Optional[MagicMock] = None, **overrides) -> InfobloxProvider:
    config = make_config(
        edge_dns_type="infoblox",
        infoblox=InfobloxConfig(grid_host="grid.example.com", username="admin", password="secret"),
        **overrides,
    )
    if assistant is None:
        assistant = MagicMock()
        assistant.gslb_ingress_exposed_ips.return_value = ["10.0.0.5"]
    return InfobloxProvider(config, assistant, session=wapi.session)


# =============================================================================
# Construction
# =============================================================================


class TestInfobloxConstruction:
    def test_checks_grid_connectivity(self) -> None:
        wapi = FakeWapi()

        make_provider(wapi)

        wapi.session.get.assert_called_once_with(f"{BASE}/grid", timeout=10)
        assert wapi.session.verify is True

    def test_unreachable_grid_fails(self) -> None:
        wapi = FakeWapi()
        wapi.session.get.side_effect = requests.exceptions.ConnectionError("Connection refused")

        with pytest.raises(ConstructionError, match="grid.example.com"):
            make_provider(wapi)

    def test_rejected_credentials_fail(self) -> None:
        wapi = FakeWapi()
        wapi.session.get.return_value = make_response(status=401)

        with pytest.raises(ConstructionError):
            make_provider(wapi)

    def test_missing_credentials_fail_before_connecting(self) -> None:
        wapi = FakeWapi()
        config = make_config(edge_dns_type="infoblox", infoblox=InfobloxConfig(grid_host="grid.example.com"))

        with pytest.raises(ConstructionError, match="EXTERNAL_DNS_INFOBLOX_WAPI_USERNAME"):
            InfobloxProvider(config, MagicMock(), session=wapi.session)

        wapi.session.get.assert_not_called()


# =============================================================================
# Delegation
# =============================================================================


class TestInfobloxDelegation:
    def test_creates_delegated_zone_and_heartbeat(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("gslb_controller.providers.split_brain_timestamp", lambda: "2024-05-01T12:00:00")
        wapi = FakeWapi()

        make_provider(wapi).create_zone_delegation(make_gslb())

        zones = wapi.of_type("zone_delegated")
        assert len(zones) == 1
        assert zones[0]["fqdn"] == "cloud.example.com"
        assert zones[0]["delegate_to"] == [{"name": EU_NS, "address": "10.0.0.5"}]
        assert zones[0]["delegated_ttl"] == 30
        txts = wapi.of_type("record:txt")
        assert txts == [
            {"_ref": txts[0]["_ref"], "name": EU_HEARTBEAT, "text": "2024-05-01T12:00:00", "ttl": 30}
        ]

    def test_keeps_fresh_peers_and_replaces_local_entries(self) -> None:
        wapi = FakeWapi()
        wapi.seed(
            "zone_delegated",
            fqdn="cloud.example.com",
            delegate_to=[
                {"name": EU_NS, "address": "10.0.0.1"},
                {"name": US_NS, "address": "10.0.1.53"},
            ],
        )
        assistant = MagicMock()
        assistant.gslb_ingress_exposed_ips.return_value = ["10.0.0.6", "10.0.0.5"]

        make_provider(wapi, assistant).create_zone_delegation(make_gslb())

        zone = wapi.of_type("zone_delegated")[0]
        assert zone["delegate_to"] == [
            {"name": US_NS, "address": "10.0.1.53"},
            {"name": EU_NS, "address": "10.0.0.5"},
            {"name": EU_NS, "address": "10.0.0.6"},
        ]
        assistant.inspect_txt_threshold.assert_called_once_with(
            "us-heartbeat-cloud.example.com.example.com", timedelta(seconds=300)
        )

    def test_drops_peers_with_stale_heartbeat(self) -> None:
        wapi = FakeWapi()
        wapi.seed(
            "zone_delegated",
            fqdn="cloud.example.com",
            delegate_to=[
                {"name": US_NS, "address": "10.0.1.53"},
                {"name": ZA_NS, "address": "10.0.2.53"},
            ],
        )
        assistant = MagicMock()
        assistant.gslb_ingress_exposed_ips.return_value = ["10.0.0.5"]

        def inspect(fqdn, threshold):
            if fqdn.startswith("za-"):
                raise StaleOrMissingRecordError("expired")

        assistant.inspect_txt_threshold.side_effect = inspect

        make_provider(wapi, assistant, ext_clusters_geo_tags=["us", "za"]).create_zone_delegation(make_gslb())

        names = [entry["name"] for entry in wapi.of_type("zone_delegated")[0]["delegate_to"]]
        assert names == [US_NS, EU_NS]

    def test_updates_existing_heartbeat(self) -> None:
        wapi = FakeWapi()
        ref = wapi.seed("record:txt", name=EU_HEARTBEAT, text="2020-01-01T00:00:00", ttl=30)

        make_provider(wapi).create_zone_delegation(make_gslb())

        assert wapi.objects[ref]["text"] != "2020-01-01T00:00:00"
        assert len(wapi.of_type("record:txt")) == 1

    def test_exposed_ip_failure_writes_nothing(self) -> None:
        wapi = FakeWapi()
        assistant = MagicMock()
        assistant.gslb_ingress_exposed_ips.side_effect = NotFoundError("Ingress", "test-gslb", "test-gslb")

        with pytest.raises(NotFoundError):
            make_provider(wapi, assistant).create_zone_delegation(make_gslb())

        assert wapi.calls == []

    def test_wapi_failure_is_persistence_error(self) -> None:
        wapi = FakeWapi()
        wapi.session.request.side_effect = requests.exceptions.ConnectionError("reset")

        with pytest.raises(PersistenceError, match="zone_delegated"):
            make_provider(wapi).create_zone_delegation(make_gslb())


# =============================================================================
# Finalize
# =============================================================================


class TestInfobloxFinalize:
    def test_removes_zone_and_heartbeat(self) -> None:
        wapi = FakeWapi()
        wapi.seed("zone_delegated", fqdn="cloud.example.com", delegate_to=[])
        wapi.seed("record:txt", name=EU_HEARTBEAT, text="2024-05-01T12:00:00")

        make_provider(wapi).finalize(make_gslb())

        assert wapi.objects == {}

    def test_nothing_to_remove_is_success(self) -> None:
        wapi = FakeWapi()

        make_provider(wapi).finalize(make_gslb())

        assert [c[0] for c in wapi.calls] == ["GET", "GET"]


def test_name_is_upper_case_tag() -> None:
    assert str(make_provider(FakeWapi())) == "INFOBLOX"

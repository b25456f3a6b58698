"""
Tests for the HTTP ledger transport and the gateway retry loop over it.
"""
import pytest
import requests

from fair_sdk.gateway.client import LedgerGateway, is_transient
from fair_sdk.gateway.exceptions import (
    GatewayConnectionError,
    GatewayResponseError,
    GatewayTimeoutError,
)
from fair_sdk.gateway.queries import FIND_BY_TAGS, FIND_BY_TAGS_WITH_OWNERS, QUERY_TX_BY_IDS
from fair_sdk.gateway.transport import HttpTransport, get_transport
from fair_sdk.gateway.stub_transport import InMemoryLedger
from fair_sdk.tags import tag_filter

GATEWAY = "https://ledger.example.com"
ENDPOINT = f"{GATEWAY}/graphql"


def edge(tx_id, cursor=None, tags=()):
    return {
        "cursor": cursor or tx_id,
        "node": {
            "id": tx_id,
            "owner": {"address": "owner-" + tx_id, "key": None},
            "tags": [{"name": n, "value": v} for n, v in tags],
        },
    }


def page(*edges, has_next=False):
    return {"data": {"transactions": {"pageInfo": {"hasNextPage": has_next}, "edges": list(edges)}}}


@pytest.fixture
def transport():
    return HttpTransport(GATEWAY)


@pytest.fixture
def http_gateway(transport):
    return LedgerGateway(transport=transport, timeout=3, max_retries=2)


class TestHttpTransport:

    def test_requires_https(self):
        with pytest.raises(ValueError):
            HttpTransport("http://ledger.example.com")

    def test_posts_query_and_variables(self, transport, requests_mock):
        requests_mock.post(ENDPOINT, json=page(edge("a")))
        data = transport.execute(FIND_BY_TAGS, {"tags": [], "first": 1}, timeout=2)
        assert data["transactions"]["edges"][0]["node"]["id"] == "a"
        body = requests_mock.last_request.json()
        assert body["query"] == FIND_BY_TAGS
        assert body["variables"] == {"tags": [], "first": 1}

    def test_http_error_maps_to_response_error(self, transport, requests_mock):
        requests_mock.post(ENDPOINT, status_code=404)
        with pytest.raises(GatewayResponseError) as info:
            transport.execute(FIND_BY_TAGS, {})
        assert info.value.status_code == 404

    def test_graphql_errors(self, transport, requests_mock):
        requests_mock.post(ENDPOINT, json={"errors": [{"message": "bad filter"}]})
        with pytest.raises(GatewayResponseError, match="bad filter"):
            transport.execute(FIND_BY_TAGS, {})

    @pytest.mark.parametrize("kwargs", [{"text": "<html>"}, {"json": [1, 2]}, {"json": {"data": None}}])
    def test_malformed_payloads(self, transport, requests_mock, kwargs):
        requests_mock.post(ENDPOINT, **kwargs)
        with pytest.raises(GatewayResponseError):
            transport.execute(FIND_BY_TAGS, {})

    def test_timeout(self, transport, requests_mock):
        requests_mock.post(ENDPOINT, exc=requests.exceptions.ReadTimeout)
        with pytest.raises(GatewayTimeoutError):
            transport.execute(FIND_BY_TAGS, {})

    def test_connection_error(self, transport, requests_mock):
        requests_mock.post(ENDPOINT, exc=requests.exceptions.ConnectionError)
        with pytest.raises(GatewayConnectionError):
            transport.execute(FIND_BY_TAGS, {})

    def test_get_transport(self):
        assert isinstance(get_transport(GATEWAY), HttpTransport)
        assert isinstance(get_transport(None), InMemoryLedger)


class TestGatewayRetries:

    @pytest.mark.parametrize("error,expected", [
        (GatewayConnectionError("x"), True),
        (GatewayTimeoutError("x"), True),
        (GatewayResponseError("x", status_code=503), True),
        (GatewayResponseError("x", status_code=429), True),
        (GatewayResponseError("x", status_code=400), False),
        (GatewayResponseError("x"), False),
    ])
    def test_is_transient(self, error, expected):
        assert is_transient(error) is expected

    def test_retries_transient_then_succeeds(self, http_gateway, requests_mock):
        requests_mock.post(ENDPOINT, [{"status_code": 503}, {"status_code": 502}, {"json": page(edge("a"))}])
        result = http_gateway.query([tag_filter("operation_name", "X")])
        assert [e.id for e in result.edges] == ["a"]
        assert requests_mock.call_count == 3

    def test_gives_up_after_max_retries(self, http_gateway, requests_mock):
        requests_mock.post(ENDPOINT, status_code=503)
        with pytest.raises(GatewayResponseError):
            http_gateway.query()
        assert requests_mock.call_count == 3

    def test_permanent_error_not_retried(self, http_gateway, requests_mock):
        requests_mock.post(ENDPOINT, status_code=400)
        with pytest.raises(GatewayResponseError):
            http_gateway.query()
        assert requests_mock.call_count == 1

    def test_malformed_page(self, http_gateway, requests_mock):
        requests_mock.post(ENDPOINT, json={"data": {"transactions": {"edges": []}}})
        with pytest.raises(GatewayResponseError, match="Malformed"):
            http_gateway.query()


class TestGatewayQueries:

    def test_selects_query_document(self, http_gateway, requests_mock):
        requests_mock.post(ENDPOINT, json=page())
        http_gateway.query()
        assert requests_mock.last_request.json()["query"] == FIND_BY_TAGS
        http_gateway.query(owners=["me"])
        assert requests_mock.last_request.json()["query"] == FIND_BY_TAGS_WITH_OWNERS
        assert requests_mock.last_request.json()["variables"]["owners"] == ["me"]
        http_gateway.get_by_id("tx")
        assert requests_mock.last_request.json()["query"] == QUERY_TX_BY_IDS
        assert requests_mock.last_request.json()["variables"]["ids"] == ["tx"]

    def test_drain_follows_cursors_in_order(self, http_gateway, requests_mock):
        requests_mock.post(ENDPOINT, [
            {"json": page(edge("a", "c1"), edge("b", "c2"), has_next=True)},
            {"json": page(edge("c", "c3"))},
        ])
        entries = http_gateway.drain_all(page_size=2)
        assert [e.id for e in entries] == ["a", "b", "c"]
        assert requests_mock.request_history[1].json()["variables"]["after"] == "c2"

    def test_drain_stops_on_empty_page_claiming_more(self, http_gateway, requests_mock):
        requests_mock.post(ENDPOINT, json=page(has_next=True))
        assert http_gateway.drain_all() == []
        assert requests_mock.call_count == 1

    def test_drain_failure_discards_partial_results(self, http_gateway, requests_mock):
        requests_mock.post(ENDPOINT, [
            {"json": page(edge("a"), has_next=True)},
            {"status_code": 400},
        ])
        with pytest.raises(GatewayResponseError):
            http_gateway.drain_all()

"""
Tests for the HTTP and in-memory token contracts.
"""
import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from fair_sdk.config import ProtocolConfig
from fair_sdk.exceptions import GatewayResponseError, TransferError
from fair_sdk.models import TransferInstruction
from fair_sdk.payments.contract import HttpTokenContract, interaction_tags
from fair_sdk.payments.stub_contract import InMemoryTokenContract
from fair_sdk.tags import build_tag, find_tag

STATE = "https://state.example.com"
SEQUENCER = "https://sequencer.example.com"


@pytest.fixture
def wallet():
    wallet = MagicMock()
    wallet.address = "payer-address"
    wallet.sign_data_item.return_value = b"signature"
    return wallet


@pytest.fixture
def http_contract(wallet):
    return HttpTokenContract(STATE, SEQUENCER, ProtocolConfig(), wallet=wallet, timeout=2)


def test_interaction_tags_order():
    instruction = TransferInstruction(function="transfer", target="vault", qty=Decimal(5))
    tags = interaction_tags("contract-id", instruction, [build_tag("operation_name", "X")])
    assert [t.name for t in tags] == ["App-Name", "App-Version", "Contract", "Input", "Operation-Name"]
    assert json.loads(tags[3].value) == {"function": "transfer", "target": "vault", "qty": "5"}


class TestHttpTokenContract:

    def test_read_validity(self, http_contract, requests_mock):
        requests_mock.get(f"{STATE}/validity", json={"validity": True})
        assert http_contract.read_validity("seq-1") is True
        query = requests_mock.last_request.qs
        assert query["id"] == ["seq-1"]
        assert "contractid" in query

    @pytest.mark.parametrize("payload", [{"validity": False}, {}, {"validity": "true"}])
    def test_read_validity_false_unless_exactly_true(self, http_contract, requests_mock, payload):
        requests_mock.get(f"{STATE}/validity", json=payload)
        assert http_contract.read_validity("seq-1") is False

    def test_read_validity_error_propagates(self, http_contract, requests_mock):
        requests_mock.get(f"{STATE}/validity", status_code=404)
        with pytest.raises(GatewayResponseError):
            http_contract.read_validity("seq-1")

    def test_read_balance(self, http_contract, requests_mock):
        requests_mock.get(f"{STATE}/contract", json={"state": {"balances": {"me": 2500000}}})
        assert http_contract.read_balance("me") == Decimal("2.5")
        assert http_contract.read_balance("nobody") == Decimal(0)

    def test_read_balance_malformed(self, http_contract, requests_mock):
        requests_mock.get(f"{STATE}/contract", json={"state": {}})
        with pytest.raises(GatewayResponseError):
            http_contract.read_balance("me")

    def test_write_transfer(self, http_contract, wallet, requests_mock):
        requests_mock.post(f"{SEQUENCER}/gateway/sequencer/register", json={"id": "interaction-1"})
        tx_id = http_contract.write_transfer("operator", 700, [build_tag("operation_name", "Inference Payment")])
        assert tx_id == "interaction-1"
        body = requests_mock.last_request.json()
        assert body["owner"] == "payer-address"
        names = [tag["name"] for tag in body["tags"]]
        assert names[:4] == ["App-Name", "App-Version", "Contract", "Input"]
        assert "Operation-Name" in names
        wallet.sign_data_item.assert_called_once()

    def test_write_transfer_without_wallet(self):
        contract = HttpTokenContract(STATE, SEQUENCER, ProtocolConfig())
        with pytest.raises(TransferError):
            contract.write_transfer("operator", 1, [])

    @pytest.mark.parametrize("kwargs", [
        {"status_code": 500},
        {"exc": requests.exceptions.ConnectionError},
        {"json": {}},
        {"text": "not json"},
    ])
    def test_write_transfer_failures(self, http_contract, requests_mock, kwargs):
        requests_mock.post(f"{SEQUENCER}/gateway/sequencer/register", **kwargs)
        with pytest.raises(TransferError):
            http_contract.write_transfer("operator", 1, [])


class TestInMemoryTokenContract:

    def test_transfer_moves_balances_and_records_interaction(self, ledger, protocol):
        contract = InMemoryTokenContract(ledger, "payer", protocol=protocol, balances={"payer": 1000})
        tx_id = contract.write_transfer("operator", 700, [])
        assert contract.read_balance("payer") == Decimal(300) / protocol.token_divider
        assert contract.read_balance("operator") == Decimal(700) / protocol.token_divider
        entry = ledger.entries()[0]
        assert entry.id == tx_id
        assert find_tag(entry, "sequencer_owner") == "payer"
        assert contract.read_validity(find_tag(entry, "sequencer_tx_id")) is True

    def test_insufficient_balance(self, ledger, protocol):
        contract = InMemoryTokenContract(ledger, "payer", protocol=protocol, balances={"payer": 10})
        with pytest.raises(TransferError):
            contract.write_transfer("operator", 11, [])
        assert len(ledger) == 0

    def test_non_positive_quantity(self, ledger, protocol):
        contract = InMemoryTokenContract(ledger, "payer", protocol=protocol, enforce_balances=False)
        with pytest.raises(TransferError):
            contract.write_transfer("operator", 0, [])

    def test_mint_and_validity_overrides(self, ledger, protocol):
        contract = InMemoryTokenContract(ledger, "payer", protocol=protocol)
        contract.mint("payer", 5)
        assert contract.read_balance("payer") == Decimal(5) / protocol.token_divider
        entry = contract.record_interaction("payer", "vault", 5, [], valid=False)
        ref = find_tag(entry, "sequencer_tx_id")
        assert contract.read_validity(ref) is False
        contract.set_validity(ref, True)
        assert contract.read_validity(ref) is True
        assert contract.read_validity("unknown") is False

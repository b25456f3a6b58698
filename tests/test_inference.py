"""
Tests for the inference orchestrator.
"""
import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from fair_sdk.constants import MAX_MESSAGE_SIZE
from fair_sdk.entities import Model, Operator, Script
from fair_sdk.exceptions import (
    InsufficientBalanceError,
    InvalidReferenceError,
    PartialPaymentError,
    TransferError,
    UploadError,
)
from fair_sdk.inference import InferenceOrchestrator
from fair_sdk.models import Configuration, InferenceState, Tag
from fair_sdk.payments.stub_contract import InMemoryTokenContract
from fair_sdk.payments.verifier import PaymentVerifier
from fair_sdk.storage import InMemoryUploader
from fair_sdk.tags import find_tag, find_tags

from conftest import CREATOR, CURATOR, NOW, OPERATOR, USER


@pytest.fixture
def funded_contract(ledger, protocol):
    return InMemoryTokenContract(ledger, USER, protocol=protocol, balances={USER: 10_000_000})


@pytest.fixture
def uploader(ledger):
    return InMemoryUploader(ledger, USER)


@pytest.fixture
def orchestrator(gateway, funded_contract, uploader, protocol):
    return InferenceOrchestrator(gateway, funded_contract, uploader, protocol, clock=lambda: NOW)


@pytest.fixture
def listing(market):
    model_entry = market.model()
    script_entry = market.script(model_entry)
    operator_entry = market.operator(script_entry, fee=1000)
    return Model.from_entry(model_entry), Script.from_entry(script_entry), Operator.from_entry(operator_entry)


class TestConversations:

    def test_default_conversation_is_one(self, orchestrator, listing):
        _, script, _ = listing
        assert orchestrator.resolve_conversation_id(USER, script) == 1

    def test_start_conversation_increments(self, orchestrator, listing):
        _, script, _ = listing
        assert orchestrator.start_conversation(USER, script) == 2
        assert orchestrator.resolve_conversation_id(USER, script) == 2
        assert orchestrator.start_conversation(USER, script) == 3

    def test_other_users_conversations_ignored(self, orchestrator, listing, ledger, gateway, protocol):
        _, script, _ = listing
        other = InferenceOrchestrator(gateway, MagicMock(), InMemoryUploader(ledger, "someone"), protocol)
        other.start_conversation("someone", script)
        assert orchestrator.resolve_conversation_id(USER, script) == 1


class TestRunInference:

    def test_pays_every_stakeholder(self, orchestrator, listing, funded_contract, protocol):
        model, script, operator = listing
        receipt = orchestrator.run_inference(model, script, operator, "hello", USER)
        assert orchestrator.state is InferenceState.PAID
        assert receipt.conversation_id == 1
        assert receipt.total_fee == 1000
        assert receipt.total_u_cost == Decimal(1000) / protocol.token_divider
        divider = protocol.token_divider
        assert funded_contract.read_balance(OPERATOR) == Decimal(700) / divider
        assert funded_contract.read_balance(CURATOR) == Decimal(50) / divider
        assert funded_contract.read_balance(CREATOR) == Decimal(150) / divider
        assert funded_contract.read_balance(protocol.vault_address) == Decimal(100) / divider

    def test_request_becomes_paid_for_liveness_checks(self, orchestrator, listing, funded_contract, gateway, protocol):
        model, script, operator = listing
        verifier = PaymentVerifier(gateway, funded_contract, protocol)
        receipt = orchestrator.run_inference(model, script, operator, "hello", USER)
        request = gateway.get_by_id(receipt.request_id)
        assert verifier.is_inference_paid(request, operator.fee, script.context(), operator.owner)

    def test_upload_tags(self, orchestrator, listing, gateway, uploader):
        model, script, operator = listing
        configuration = Configuration(
            n_images=2, negative_prompt="blurry", asset_names=["a"], file_name="in.txt",
            custom_tags=[Tag(name="Mood", value="calm")],
        )
        receipt = orchestrator.run_inference(model, script, operator, "hello", USER, configuration)
        request = gateway.get_by_id(receipt.request_id)
        assert uploader.read(receipt.request_id) == "hello"
        assert find_tag(request, "operation_name") == "Script Inference Request"
        assert find_tag(request, "script_operator") == OPERATOR
        assert find_tag(request, "script_curator") == CURATOR
        assert find_tag(request, "conversation_identifier") == "1"
        assert find_tag(request, "file_name") == "in.txt"
        assert find_tag(request, "n_images") == "2"
        assert json.loads(find_tag(request, "user_custom_tags")) == [{"name": "Mood", "value": "calm"}]
        assert json.loads(find_tag(request, "init_state"))["firstOwner"] == USER
        assert find_tags(request, "protocol_name") == ["Fair Protocol"]

    def test_without_atomic_assets(self, orchestrator, listing, gateway):
        model, script, operator = listing
        receipt = orchestrator.run_inference(
            model, script, operator, "hello", USER, Configuration(create_atomic_assets=False)
        )
        assert find_tag(gateway.get_by_id(receipt.request_id), "contract_src") is None

    def test_stable_diffusion_fee(self, orchestrator, market, protocol):
        model_entry = market.model()
        script_entry = market.script(model_entry, output_configuration="stable-diffusion")
        operator = Operator.from_entry(market.operator(script_entry, fee=1000))
        script = Script.from_entry(script_entry)
        assert orchestrator.quote(script, operator)["operator"] == 2800
        receipt = orchestrator.run_inference(
            Model.from_entry(model_entry), script, operator, "a cat", USER, Configuration(n_images=2)
        )
        assert receipt.total_fee == 2000

    def test_message_too_large(self, orchestrator, listing, ledger):
        model, script, operator = listing
        before = len(ledger)
        with pytest.raises(ValueError):
            orchestrator.run_inference(model, script, operator, "x" * (MAX_MESSAGE_SIZE + 1), USER)
        assert len(ledger) == before

    def test_insufficient_balance_sends_nothing(self, gateway, uploader, protocol, listing, ledger):
        model, script, operator = listing
        broke = InMemoryTokenContract(ledger, USER, protocol=protocol, balances={USER: 999})
        orchestrator = InferenceOrchestrator(gateway, broke, uploader, protocol)
        before = len(ledger)
        with pytest.raises(InsufficientBalanceError) as info:
            orchestrator.run_inference(model, script, operator, "hello", USER)
        assert info.value.required == Decimal(1000) / protocol.token_divider
        assert len(ledger) == before
        assert uploader.payloads == {}

    def test_invalid_operator_fee(self, orchestrator, listing):
        model, script, operator = listing
        broken = Operator(txid=operator.txid, owner=operator.owner, name=operator.name, fee=None, raw=operator.raw)
        with pytest.raises(InvalidReferenceError):
            orchestrator.run_inference(model, script, broken, "hello", USER)

    def test_upload_without_id(self, gateway, funded_contract, protocol, listing):
        model, script, operator = listing
        uploader = MagicMock()
        uploader.upload.return_value = ""
        orchestrator = InferenceOrchestrator(gateway, funded_contract, uploader, protocol)
        with pytest.raises(UploadError):
            orchestrator.run_inference(model, script, operator, "hello", USER)
        assert funded_contract.read_balance(OPERATOR) == 0

    def test_partial_payment(self, gateway, uploader, protocol, listing):
        model, script, operator = listing
        contract = MagicMock()
        contract.read_balance.return_value = Decimal(1)
        contract.write_transfer.side_effect = ["op-tx", "cur-tx", TransferError("sequencer down")]
        orchestrator = InferenceOrchestrator(gateway, contract, uploader, protocol)
        with pytest.raises(PartialPaymentError) as info:
            orchestrator.run_inference(model, script, operator, "hello", USER)
        assert orchestrator.state is InferenceState.PARTIALLY_PAID
        assert info.value.completed == {"operator": "op-tx", "curator": "cur-tx"}
        assert info.value.failed_stakeholder == "creator"
        assert info.value.request_id in uploader.payloads
        assert contract.write_transfer.call_count == 3


class TestHistory:

    def test_requests_and_responses(self, orchestrator, listing, market):
        model, script, operator = listing
        receipt = orchestrator.run_inference(model, script, operator, "hello", USER)
        requests = orchestrator.get_requests(USER, script, operator.owner)
        assert [r.id for r in requests] == [receipt.request_id]

        request = requests[0]
        market.respond(request, operator="impostor")
        assert orchestrator.get_responses(requests) == []
        response = market.respond(request)
        assert [r.id for r in orchestrator.get_responses(requests)] == [response.id]

    def test_no_requests_no_responses(self, orchestrator):
        assert orchestrator.get_responses([]) == []

"""
Pytest fixtures for the Fair SDK tests.

Most tests run against an InMemoryLedger with an InMemoryTokenContract
recording sequenced interactions on it. The ``market`` fixture publishes
marketplace entries (payments, deletions, requests, responses, proofs)
with the tags real clients put on them.
"""
import json
import time

import pytest

from fair_sdk.config import ProtocolConfig
from fair_sdk.constants import (
    CANCEL_OPERATION,
    INFERENCE_PAYMENT,
    MODEL_CREATION_PAYMENT,
    MODEL_DELETION,
    OPERATOR_ACTIVE_PROOF,
    REGISTER_OPERATION,
    SCRIPT_CREATION_PAYMENT,
    SCRIPT_DELETION,
    SCRIPT_INFERENCE_REQUEST,
    SCRIPT_INFERENCE_RESPONSE,
)
from fair_sdk.gateway._rate_limited_log import reset_rate_limit_cache
from fair_sdk.gateway.client import LedgerGateway
from fair_sdk.gateway.stub_transport import InMemoryLedger, new_tx_id
from fair_sdk.payments.rules import InferenceShareRule
from fair_sdk.payments.stub_contract import InMemoryTokenContract
from fair_sdk.payments.verifier import PaymentVerifier
from fair_sdk.tags import build_tag, effective_owner, find_tag

NOW = 1_700_000_000

CREATOR = "creator-address-0000000000000000000000000000"
CURATOR = "curator-address-0000000000000000000000000000"
OPERATOR = "operator-address-000000000000000000000000000"
USER = "user-address-000000000000000000000000000000000"


# Make time.sleep instantaneous so retries don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("FAIR_NETWORK", "FAIR_GATEWAY_URL", "FAIR_GATEWAY_TIMEOUT", "FAIR_LIVENESS_POLICY", "FAIR_INSECURE_GW"):
        monkeypatch.delenv(name, raising=False)
    reset_rate_limit_cache()


@pytest.fixture
def protocol():
    return ProtocolConfig(max_concurrency=1)


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def gateway(ledger):
    return LedgerGateway(transport=ledger, timeout=5)


@pytest.fixture
def contract(ledger, protocol):
    return InMemoryTokenContract(ledger, USER, protocol=protocol)


@pytest.fixture
def verifier(gateway, contract, protocol):
    return PaymentVerifier(gateway, contract, protocol)


class Market:
    """Publishes marketplace entries onto an in-memory ledger"""

    def __init__(self, ledger: InMemoryLedger, contract: InMemoryTokenContract, protocol: ProtocolConfig):
        self.ledger = ledger
        self.contract = contract
        self.protocol = protocol

    def _protocol_tags(self):
        return [
            build_tag("protocol_name", self.protocol.protocol_name),
            build_tag("protocol_version", self.protocol.protocol_version),
        ]

    def payment(self, owner, operation, tags, qty, target=None, valid=True, function="transfer"):
        return self.contract.record_interaction(
            owner,
            target or self.protocol.vault_address,
            qty,
            self._protocol_tags() + [build_tag("operation_name", operation)] + list(tags),
            valid=valid,
            function=function,
        )

    def model(self, creator=CREATOR, model_txid=None, name="llama", category=None,
              unix_time=NOW, qty=None, valid=True, **kwargs):
        tags = [
            build_tag("model_transaction", model_txid or new_tx_id()),
            build_tag("model_name", name),
            build_tag("unix_time", unix_time),
        ]
        if category:
            tags.append(build_tag("model_category", category))
        qty = self.protocol.model_creation_qty if qty is None else qty
        return self.payment(creator, MODEL_CREATION_PAYMENT, tags, qty, valid=valid, **kwargs)

    def script(self, model_entry, curator=CURATOR, script_txid=None, name="chat", unix_time=NOW,
               previous_versions=None, output_configuration=None, qty=None, valid=True, **kwargs):
        tags = [
            build_tag("script_transaction", script_txid or new_tx_id()),
            build_tag("script_name", name),
            build_tag("model_transaction", find_tag(model_entry, "model_transaction")),
            build_tag("model_name", find_tag(model_entry, "model_name")),
            build_tag("model_creator", effective_owner(model_entry)),
        ]
        if unix_time is not None:
            tags.append(build_tag("unix_time", unix_time))
        if output_configuration:
            tags.append(build_tag("output_configuration", output_configuration))
        if previous_versions is not None:
            tags.append(build_tag("previous_versions", json.dumps(previous_versions)))
        qty = self.protocol.script_creation_qty if qty is None else qty
        return self.payment(curator, SCRIPT_CREATION_PAYMENT, tags, qty, valid=valid, **kwargs)

    def operator(self, script_entry, operator=OPERATOR, fee=1000, name="gpu-box", qty=None, valid=True, **kwargs):
        tags = [
            build_tag("script_transaction", find_tag(script_entry, "script_transaction")),
            build_tag("script_name", find_tag(script_entry, "script_name")),
            build_tag("script_curator", effective_owner(script_entry)),
            build_tag("operator_name", name),
            build_tag("operator_fee", fee),
            build_tag("unix_time", NOW),
        ]
        qty = self.protocol.operator_registration_qty if qty is None else qty
        return self.payment(operator, REGISTER_OPERATION, tags, qty, valid=valid, **kwargs)

    def delete_model(self, model_entry, owner=None):
        return self.ledger.publish(owner or effective_owner(model_entry), self._protocol_tags() + [
            build_tag("operation_name", MODEL_DELETION),
            build_tag("model_transaction", find_tag(model_entry, "model_transaction")),
        ])

    def delete_script(self, script_entry, owner=None):
        return self.ledger.publish(owner or effective_owner(script_entry), self._protocol_tags() + [
            build_tag("operation_name", SCRIPT_DELETION),
            build_tag("script_transaction", find_tag(script_entry, "script_transaction")),
        ])

    def cancel(self, registration, owner=None):
        return self.ledger.publish(owner or effective_owner(registration), self._protocol_tags() + [
            build_tag("operation_name", CANCEL_OPERATION),
            build_tag("registration_transaction", registration.id),
        ])

    def request(self, script_entry, operator=OPERATOR, user=USER, n_images=None):
        tags = self._protocol_tags() + [
            build_tag("operation_name", SCRIPT_INFERENCE_REQUEST),
            build_tag("script_transaction", find_tag(script_entry, "script_transaction")),
            build_tag("script_name", find_tag(script_entry, "script_name")),
            build_tag("script_curator", effective_owner(script_entry)),
            build_tag("script_operator", operator),
            build_tag("conversation_identifier", 1),
        ]
        if n_images is not None:
            tags.append(build_tag("n_images", n_images))
        return self.ledger.publish(user, tags)

    def respond(self, request, operator=OPERATOR):
        return self.ledger.publish(operator, self._protocol_tags() + [
            build_tag("operation_name", SCRIPT_INFERENCE_RESPONSE),
            build_tag("request_transaction", request.id),
        ])

    def pay_inference(self, request, script_entry, fee=1000, operator=OPERATOR, creator=CREATOR,
                      valid=True, shares=None, skip=(), payer=None):
        """Publish one transfer per stakeholder; ``shares`` overrides amounts, ``skip`` omits some"""
        amounts = InferenceShareRule(self.protocol).shares(fee)
        amounts.update(shares or {})
        targets = {
            "operator": operator,
            "curator": effective_owner(script_entry),
            "creator": creator,
            "marketplace": self.protocol.vault_address,
        }
        tags = [
            build_tag("script_transaction", find_tag(script_entry, "script_transaction")),
            build_tag("inference_transaction", request.id),
        ]
        entries = {}
        for stakeholder, target in targets.items():
            if stakeholder in skip:
                continue
            entries[stakeholder] = self.payment(
                payer or request.owner.address, INFERENCE_PAYMENT, tags, amounts[stakeholder], target=target, valid=valid
            )
        return entries

    def serve(self, script_entry, count, operator=OPERATOR, fee=1000, answered=None):
        """Publish ``count`` paid requests, answering the first ``answered`` of them"""
        answered = count if answered is None else answered
        requests = []
        for index in range(count):
            request = self.request(script_entry, operator=operator)
            self.pay_inference(request, script_entry, fee=fee, operator=operator)
            if index < answered:
                self.respond(request, operator=operator)
            requests.append(request)
        return requests

    def proof(self, operator=OPERATOR, unix_time=NOW):
        return self.ledger.publish(operator, [
            build_tag("protocol_name", self.protocol.protocol_name),
            build_tag("operation_name", OPERATOR_ACTIVE_PROOF),
            build_tag("unix_time", unix_time),
        ])


@pytest.fixture
def market(ledger, contract, protocol):
    return Market(ledger, contract, protocol)

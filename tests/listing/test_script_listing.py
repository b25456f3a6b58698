"""
Tests for the script listing filter: versions, supersession and the operator gate.
"""
import pytest

from fair_sdk.listing.liveness import liveness_rule_for
from fair_sdk.listing.operators import OperatorFilter
from fair_sdk.listing.scripts import ScriptFilter, collapse_versions, drop_previous_versions
from fair_sdk.models import ByEntity, ByReference, FailureReason
from fair_sdk.tags import find_tag


@pytest.fixture
def scripts(gateway, verifier, protocol):
    operators = OperatorFilter(gateway, verifier, protocol, liveness_rule_for(protocol, gateway, verifier))
    return ScriptFilter(gateway, verifier, protocol, operators)


@pytest.fixture
def model_entry(market):
    return market.model()


def served_script(market, model_entry, **kwargs):
    entry = market.script(model_entry, **kwargs)
    market.operator(entry)
    return entry


class TestScriptListing:

    def test_lists_served_scripts(self, market, scripts, model_entry):
        entry = served_script(market, model_entry)
        listed = scripts.list_scripts()
        assert [s.payment_id for s in listed] == [entry.id]
        assert listed[0].model_txid == find_tag(model_entry, "model_transaction")

    def test_script_without_operator_excluded(self, market, scripts, model_entry):
        entry = market.script(model_entry)
        result = scripts.run()
        assert result.items == []
        assert result.failure_for(entry.id).reason is FailureReason.NO_VALID_OPERATOR

    def test_script_with_only_cancelled_operator_excluded(self, market, scripts, model_entry):
        entry = market.script(model_entry)
        market.cancel(market.operator(entry))
        assert scripts.run().failure_for(entry.id).reason is FailureReason.NO_VALID_OPERATOR

    def test_unpaid_script_excluded(self, market, scripts, model_entry):
        entry = served_script(market, model_entry, qty=1)
        assert scripts.run().failure_for(entry.id).reason is FailureReason.PAYMENT_MISMATCH

    def test_deleted_script_excluded(self, market, scripts, model_entry):
        entry = served_script(market, model_entry)
        market.delete_script(entry)
        assert scripts.run().failure_for(entry.id).reason is FailureReason.DELETED

    def test_newest_version_wins(self, market, scripts, model_entry):
        newer = market.script(model_entry, script_txid="s1", unix_time=200)
        market.operator(newer)
        older = market.script(model_entry, script_txid="s1", unix_time=100)
        result = scripts.run()
        assert [s.payment_id for s in result.items] == [newer.id]
        assert result.failure_for(older.id).reason is FailureReason.SUPERSEDED

    def test_unpaid_newer_version_does_not_hide_paid_one(self, market, scripts, model_entry):
        paid = served_script(market, model_entry, script_txid="s1", unix_time=100)
        market.script(model_entry, script_txid="s1", unix_time=200, valid=False)
        assert [s.payment_id for s in scripts.list_scripts()] == [paid.id]

    def test_previous_versions_are_dropped(self, market, scripts, model_entry):
        old = served_script(market, model_entry, script_txid="v1")
        new = served_script(market, model_entry, script_txid="v2", previous_versions=["v1"])
        result = scripts.run()
        assert [s.txid for s in result.items] == ["v2"]
        assert result.failure_for(old.id).reason is FailureReason.SUPERSEDED
        assert new.id not in {f.entry_id for f in result.failures}

    def test_filter_by_model(self, market, scripts, model_entry):
        mine = served_script(market, model_entry)
        other_model = market.model(name="other")
        served_script(market, other_model)
        model_id = find_tag(model_entry, "model_transaction")
        assert [s.payment_id for s in scripts.list_scripts(ByReference(model_id))] == [mine.id]
        assert [s.payment_id for s in scripts.list_scripts(ByEntity(model_entry))] == [mine.id]

    def test_listing_is_idempotent(self, market, scripts, model_entry):
        served_script(market, model_entry, script_txid="s1", unix_time=100)
        served_script(market, model_entry, script_txid="s1", unix_time=200)
        market.script(model_entry)
        assert scripts.run() == scripts.run()


class TestVersionHelpers:

    def test_tie_goes_to_first_seen(self, market, model_entry):
        a = market.script(model_entry, script_txid="s1", unix_time=100)
        b = market.script(model_entry, script_txid="s1", unix_time=100)
        kept, dropped = collapse_versions([b, a])
        assert kept == [b]
        assert [f.entry_id for f in dropped] == [a.id]

    def test_missing_time_ranks_lowest(self, market, model_entry):
        untimed = market.script(model_entry, script_txid="s1", unix_time=None)
        timed = market.script(model_entry, script_txid="s1", unix_time=1)
        kept, _ = collapse_versions([untimed, timed])
        assert kept == [timed]

    def test_previous_versions_by_payment_id(self, market, model_entry):
        old = market.script(model_entry)
        new = market.script(model_entry, previous_versions=[old.id])
        kept, dropped = drop_previous_versions([new, old])
        assert kept == [new]
        assert dropped[0].entry_id == old.id

    def test_self_reference_is_not_supersession(self, market, model_entry):
        entry = market.script(model_entry, script_txid="s1", previous_versions=["s1"])
        kept, dropped = drop_previous_versions([entry])
        assert kept == [entry]
        assert dropped == []

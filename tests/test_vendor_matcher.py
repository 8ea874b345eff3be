"""Tests for vendor name normalization"""

import math
from datetime import date

import pytest

from src.ml.registry import ModelRegistry
from src.ml.text_vectors import char_ngrams, edit_similarity, fit_idf, word_tokens
from src.ml.vendor_matcher import STOP_WORDS, tokenize_vendor

CONFIRMED = [
    ("AMAZON WEB SERVICES", "AWS"),
    ("AMZN WEB SERVICES", "AWS"),
    ("AWS EMEA", "AWS"),
    ("Amazon Web Services Inc", "AWS"),
    ("AMAZON WEB SVCS", "AWS"),
    ("GOOGLE *GSUITE", "Google Workspace"),
    ("GOOGLE WORKSPACE", "Google Workspace"),
    ("Google Workspace billing", "Google Workspace"),
    ("SLACK TECHNOLOGIES", "Slack"),
    ("Slack Technologies LLC", "Slack"),
    ("SLACK T04ABC", "Slack"),
]


@pytest.fixture
def confirmed_vendors(ledger, add_txn):
    for i, (raw, normalized) in enumerate(CONFIRMED):
        add_txn(date(2025, 3, 1 + i), -100.0, vendor=raw, vendor_normalized=normalized)
    return ledger


def test_tokenizer_drops_stop_words():
    tokens = tokenize_vendor("Amazon Web Services Inc")
    assert "amazon" in tokens
    assert "services" not in tokens
    assert "inc" not in tokens
    assert "ng_ama" in tokens


def test_text_helpers():
    assert word_tokens("ACH Payment to ACME", STOP_WORDS) == ["acme"]
    assert char_ngrams("AWS", 3) == ["ng_aws"]
    assert edit_similarity("", "") == 1.0
    assert edit_similarity("AWS", "aws") == 1.0
    assert edit_similarity("abc", "abd") == pytest.approx(2 / 3)


def test_fit_idf_smoothing():
    """Rarer tokens weigh more; ids follow sorted token order"""
    vocabulary, idf = fit_idf(["aws emea", "aws"], str.split)

    assert vocabulary.tokens == ["aws", "emea"]
    assert idf[0] == pytest.approx(1.0)
    assert idf[1] == pytest.approx(math.log(3 / 2) + 1)

    vocabulary, idf = fit_idf(["!!!"], lambda text: [])
    assert len(vocabulary) == 0
    assert idf == {}


def test_untrained_matcher_returns_none(registry, org_id):
    matcher = registry.vendor(org_id)
    assert matcher.normalize("AMAZON WEB SERVICES") is None
    assert matcher.find_similar("amazon") == []


def test_too_few_examples(registry, add_txn, org_id):
    for raw, normalized in CONFIRMED[:5]:
        add_txn(date(2025, 3, 1), -100.0, vendor=raw, vendor_normalized=normalized)

    outcome = registry.vendor(org_id).train()
    assert outcome.success is False
    assert outcome.example_count == 5
    assert "need 10+" in outcome.message


def test_alias_resolves_to_canonical_vendor(registry, confirmed_vendors, org_id):
    """Amazon Web Services spellings all normalize to AWS"""
    matcher = registry.vendor(org_id)
    outcome = matcher.train()
    assert outcome.success is True
    assert outcome.details["cluster_count"] == 3

    for raw in ("AMAZON WEB SERVICES", "AMAZON WEB SERVICES EMEA", "Amazon Web Svcs"):
        match = matcher.normalize(raw)
        assert match is not None, raw
        assert match.normalized_name == "AWS"
        assert 0.65 <= match.confidence <= 0.95

    assert matcher.normalize("SLACK TECHNOLOGIES").normalized_name == "Slack"


def test_bank_feed_spellings(registry, confirmed_vendors, org_id):
    matcher = registry.vendor(org_id)
    matcher.train()

    for raw in ("AMZN WEB SERVICES", "Amzn Web Svcs"):
        match = matcher.normalize(raw)
        assert match is not None, raw
        assert match.normalized_name == "AWS"
        assert match.confidence >= 0.65

    assert matcher.normalize("Dunkin Donuts") is None


def test_failed_retrain_keeps_model(ledger, store, registry, confirmed_vendors, org_id):
    """Dropping below 10 confirmed examples leaves the trained matcher in place"""
    matcher = registry.vendor(org_id)
    assert matcher.train().success is True
    before = matcher.model.model_dump()
    revision = store.get(org_id, "vendorMatcher").revision

    slack = [t.txn_id for t in ledger.transactions.values() if t.vendor_normalized == "Slack"]
    assert len(slack) == 3
    for txn_id in slack:
        ledger.annotate_transaction(txn_id, vendor_normalized=None)

    outcome = matcher.train()

    assert outcome.success is False
    assert outcome.example_count == 8
    assert matcher.model.model_dump() == before
    assert store.get(org_id, "vendorMatcher").revision == revision
    assert matcher.normalize("SLACK TECHNOLOGIES").normalized_name == "Slack"


def test_unrelated_vendor_is_not_matched(registry, confirmed_vendors, org_id):
    matcher = registry.vendor(org_id)
    matcher.train()
    assert matcher.normalize("ZZQX") is None
    assert matcher.normalize("!!!") is None


def test_find_similar_ranks_clusters(registry, confirmed_vendors, org_id):
    matcher = registry.vendor(org_id)
    matcher.train()

    similar = matcher.find_similar("amazon web")
    assert similar[0].normalized_name == "AWS"
    assert all(s.similarity > 0.1 for s in similar)
    assert [s.similarity for s in similar] == sorted((s.similarity for s in similar), reverse=True)


def test_normalize_transactions_annotates_ledger(ledger, registry, confirmed_vendors, add_txn, org_id):
    matcher = registry.vendor(org_id)
    matcher.train()
    pending = add_txn(date(2025, 4, 2), -8300.0, vendor="AMZN WEB SERVICES")

    counts = matcher.normalize_transactions()

    assert counts == {"examined": 1, "normalized": 1}
    assert ledger.transactions[pending.txn_id].vendor_normalized == "AWS"


def test_reloaded_matcher_agrees(ledger, store, confirmed_vendors, org_id):
    """Vocabulary ids survive the store round trip"""
    matcher = ModelRegistry(ledger, store).vendor(org_id)
    matcher.train()
    expected = matcher.normalize("AMAZON WEB SERVICES EMEA")

    reloaded = ModelRegistry(ledger, store).vendor(org_id)
    assert reloaded.is_trained
    assert reloaded.normalize("AMAZON WEB SERVICES EMEA") == expected
    assert reloaded.get_stats()["cluster_count"] == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

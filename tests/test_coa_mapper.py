"""Tests for chart-of-accounts mapping and the account classifier"""

import pytest

from src.constants import BusinessType, FeedbackStatus, MappingSource, MappingStatus
from src.ml.coa_mapper import COAMapper, canonical_catalogue, match_rule, patterns_for
from src.models.account import AccountMapping, ImportedAccount, MappingFeedback
from src.utils.errors import LedgerError


@pytest.fixture
def mapper(ledger, registry):
    return COAMapper(ledger, registry)


def _imported(org_id, account_id, name, account_type=None):
    return ImportedAccount(
        id=account_id,
        organization_id=org_id,
        source_system="quickbooks",
        source_account_id=f"qb_{account_id}",
        account_name=name,
        account_type=account_type,
    )


def _corrected(org_id, name, canonical_id):
    return MappingFeedback(
        organization_id=org_id,
        source_account_name=name,
        source_system="quickbooks",
        suggested_canonical_account_id="saas:OPEX-GA",
        corrected_canonical_account_id=canonical_id,
        status=FeedbackStatus.CORRECTED,
    )


def test_catalogue_covers_rule_codes():
    """Every code a vertical's rules point at exists in its catalogue"""
    for business_type in BusinessType:
        codes = {a.code for a in canonical_catalogue(business_type)}
        patterns = patterns_for(business_type)
        assert {r.canonical_code for r in patterns.rules} <= codes
        assert set(patterns.account_type_map.values()) <= codes
        assert "ASSET-CASH" in codes


def test_first_rule_wins():
    rules = patterns_for(BusinessType.SAAS).rules
    assert match_rule("Amazon Web Services", rules).canonical_code == "COGS-HOST"
    assert match_rule("STRIPE TRANSFER", rules).canonical_code == "REV-ARR"
    assert match_rule("Corner bakery", rules) is None


def test_unknown_business_type_falls_back_to_other():
    assert patterns_for("space_mining") is patterns_for(BusinessType.OTHER)


def test_classify_text_rule_then_type_default(mapper, org_id):
    by_rule = mapper.classify_text(org_id, "AWS invoice 2025-03")
    assert by_rule.canonical_account_id == "saas:COGS-HOST"
    assert by_rule.confidence == 0.95
    assert by_rule.source == "rule"

    by_type = mapper.classify_text(org_id, "Corner bakery", account_type="Expense")
    assert by_type.canonical_code == "OPEX-GA"
    assert by_type.confidence == 0.6
    assert by_type.source == "type_map"

    assert mapper.classify_text(org_id, "Corner bakery") is None


def test_auto_map(ledger, mapper, org_id):
    """Confident rules auto-map; everything else waits for review"""
    ledger.add_imported_accounts([
        _imported(org_id, "a1", "Stripe Revenue", "Income"),
        _imported(org_id, "a2", "Slack Subscription", "Expense"),
        _imported(org_id, "a3", "Miscellaneous", "Expense"),
        _imported(org_id, "a4", "Mystery Account"),
    ])

    summary = mapper.auto_map(org_id)

    assert summary.auto_mapped == 1
    assert summary.needs_review == 3
    by_name = {r.account_name: r for r in summary.results}
    assert by_name["Stripe Revenue"].status == MappingStatus.AUTO_MAPPED
    assert by_name["Stripe Revenue"].mapped_to == "Recurring Revenue"
    assert by_name["Slack Subscription"].confidence == 0.8
    assert by_name["Miscellaneous"].mapped_to == "General & Administrative"
    assert by_name["Mystery Account"].mapped_to is None

    assert ledger.get_imported_account("a1").mapped_canonical_account_id == "saas:REV-ARR"
    pending = ledger.list_mapping_feedback(org_id, FeedbackStatus.PENDING)
    assert sorted(f.source_account_name for f in pending) == ["Miscellaneous", "Slack Subscription"]

    # nothing left pending
    assert mapper.auto_map(org_id).results == []


def test_pending_feedback_is_not_duplicated(ledger, org_id):
    feedback = MappingFeedback(organization_id=org_id, source_account_name="Misc", source_system="csv")
    assert ledger.add_mapping_feedback(feedback) is True
    assert ledger.add_mapping_feedback(feedback.model_copy()) is False


def test_classifier_learns_corrections(ledger, registry, org_id):
    ledger.add_mapping_feedback(_corrected(org_id, "WeWork membership", "saas:OPEX-GA"))
    ledger.add_mapping_feedback(_corrected(org_id, "WeWork hot desk", "saas:OPEX-GA"))
    ledger.add_mapping_feedback(_corrected(org_id, "Team offsite travel", "saas:OPEX-GA"))
    ledger.add_mapping_feedback(_corrected(org_id, "Contractor invoice design", "saas:OPEX-RD"))
    ledger.add_mapping_feedback(_corrected(org_id, "Contractor invoice backend", "saas:OPEX-RD"))
    ledger.add_mapping_feedback(_corrected(org_id, "Conference tickets", "saas:OPEX-MKTG"))

    classifier = registry.classifier(org_id)
    assert classifier.classify("WeWork") is None

    outcome = classifier.train()
    assert outcome.success is True
    assert outcome.details["class_count"] == 3

    result = classifier.classify("WeWork")
    assert result.canonical_code == "OPEX-GA"
    assert result.source == "ml_local"
    assert 0.7 <= result.confidence <= 0.95

    result = classifier.classify("contractor invoice")
    assert result.canonical_account_id == "saas:OPEX-RD"
    assert result.canonical_name == "Research & Development"

    assert classifier.classify("the and of") is None


def test_classifier_needs_five_examples(ledger, registry, org_id):
    ledger.add_mapping_feedback(_corrected(org_id, "WeWork membership", "saas:OPEX-GA"))
    outcome = registry.classifier(org_id).train()
    assert outcome.success is False
    assert outcome.example_count == 1


def test_seed_from_industry_patterns(ledger, mapper, registry, org_id):
    """One mapping per pattern alternative; high-confidence ones train the classifier"""
    result = mapper.seed_classifier_from_industry_patterns(org_id)

    assert result["business_type"] == "saas"
    assert result["seeded_mappings"] == 42
    assert result["training"].success is True
    assert result["training"].example_count == 26
    assert registry.classifier(org_id).classify("hubspot").canonical_code == "OPEX-SALES"

    # idempotent
    assert mapper.seed_classifier_from_industry_patterns(org_id)["seeded_mappings"] == 0


def test_manual_mapping_feeds_classifier(ledger, mapper, org_id):
    ledger.add_imported_accounts([_imported(org_id, "a9", "Figma Pro", "Expense")])

    outcome = mapper.update_account_mapping("a9", "saas:OPEX-RD")

    account = ledger.get_imported_account("a9")
    assert account.mapping_status == MappingStatus.MANUAL
    assert account.mapping_confidence == 1.0
    mappings = ledger.list_account_mappings(org_id)
    assert len(mappings) == 1
    assert mappings[0].source == MappingSource.USER
    # one example is not enough to train yet
    assert outcome.success is False
    assert outcome.example_count == 1

    views = mapper.get_imported_accounts(org_id)
    assert views[0].mapped_to == "Research & Development"


def test_manual_mapping_unknown_account(mapper):
    with pytest.raises(LedgerError):
        mapper.update_account_mapping("missing", "saas:OPEX-RD")


def test_inactive_mappings_are_ignored(ledger, registry, org_id):
    for i in range(6):
        ledger.upsert_account_mapping(AccountMapping(
            organization_id=org_id,
            canonical_account_id="saas:OPEX-GA",
            source_account_name=f"Old account {i}",
            source_system="csv",
            confidence_score=1.0,
            source=MappingSource.USER,
            is_active=False,
        ))
    assert registry.classifier(org_id).train().success is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

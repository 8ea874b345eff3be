"""Chart-of-accounts mapping: industry rules, type defaults, then the classifier.

Each business vertical carries an ordered list of (pattern, canonical code,
confidence) rules and a default map from ledger account type to canonical
code. The trainable AccountClassifier is only consulted when neither applies.
"""

import re
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional

from src.constants import (
    BusinessType,
    FeedbackStatus,
    MappingSource,
    MappingStatus,
    AUTO_MAP_CONFIDENCE_THRESHOLD,
    TYPE_MAP_CONFIDENCE,
)
from src.models.account import (
    AccountClassification,
    AccountMapping,
    AutoMapSummary,
    CanonicalAccount,
    ImportedAccountView,
    MappingFeedback,
    MappingResult,
)
from src.models.training import TrainOutcome
from src.tools.ledger_client import LedgerClient
from src.utils.errors import LedgerError
from src.utils.logging import get_logger
from src.utils.metrics import account_mappings

logger = get_logger(__name__)


class IndustryRule(NamedTuple):
    pattern: str
    canonical_code: str
    confidence: float


class IndustryPatterns(NamedTuple):
    rules: List[IndustryRule]
    account_type_map: Dict[str, str]


INDUSTRY_PATTERNS: Dict[BusinessType, IndustryPatterns] = {
    BusinessType.SAAS: IndustryPatterns(
        rules=[
            IndustryRule("stripe|braintree|chargebee|recurly", "REV-ARR", 0.9),
            IndustryRule("aws|amazon web services|gcp|google cloud|azure|heroku|vercel|netlify|digitalocean",
                         "COGS-HOST", 0.95),
            IndustryRule("datadog|newrelic|pagerduty|sentry|splunk", "COGS-HOST", 0.85),
            IndustryRule("github|gitlab|bitbucket|atlassian|jira", "OPEX-RD", 0.85),
            IndustryRule("hubspot|salesforce|intercom|zendesk", "OPEX-SALES", 0.9),
            IndustryRule("google ads|facebook ads|linkedin ads|meta ads", "OPEX-MKTG", 0.95),
            IndustryRule("gusto|rippling|justworks|deel|remote", "OPEX-PAYROLL", 0.95),
            IndustryRule("slack|notion|figma|miro|asana|monday", "OPEX-GA", 0.8),
        ],
        account_type_map={
            "Income": "REV-ARR",
            "Expense": "OPEX-GA",
            "Cost of Goods Sold": "COGS-HOST",
            "Bank": "ASSET-CASH",
            "Accounts Receivable": "ASSET-AR",
            "Accounts Payable": "LIAB-AP",
        },
    ),
    BusinessType.AGENCY: IndustryPatterns(
        rules=[
            IndustryRule("client payment|consulting|retainer", "REV-SERVICES", 0.85),
            IndustryRule("contractor|freelancer|upwork|fiverr|toptal", "COGS-LABOR", 0.9),
            IndustryRule("adobe|figma|sketch|invision", "OPEX-RD", 0.85),
            IndustryRule("project management|basecamp|teamwork", "OPEX-GA", 0.8),
        ],
        account_type_map={
            "Income": "REV-SERVICES",
            "Expense": "OPEX-GA",
            "Cost of Goods Sold": "COGS-LABOR",
            "Bank": "ASSET-CASH",
        },
    ),
    BusinessType.ECOMMERCE: IndustryPatterns(
        rules=[
            IndustryRule("shopify|woocommerce|bigcommerce|magento", "COGS-PLATFORM", 0.9),
            IndustryRule("stripe|paypal|square|klarna|affirm", "REV-PRODUCT", 0.85),
            IndustryRule("usps|ups|fedex|dhl|shipstation|shippo", "COGS-SHIPPING", 0.95),
            IndustryRule("inventory|warehouse|3pl|fulfillment", "COGS-INVENTORY", 0.9),
            IndustryRule("google shopping|facebook marketplace|amazon seller", "OPEX-MKTG", 0.9),
        ],
        account_type_map={
            "Income": "REV-PRODUCT",
            "Expense": "OPEX-GA",
            "Cost of Goods Sold": "COGS-INVENTORY",
            "Bank": "ASSET-CASH",
        },
    ),
    BusinessType.MARKETPLACE: IndustryPatterns(
        rules=[
            IndustryRule("platform fee|transaction fee|take rate", "REV-FEES", 0.9),
            IndustryRule("stripe|payment processing", "COGS-PAYMENTS", 0.9),
            IndustryRule("fraud|chargebacks|disputes", "COGS-PAYMENTS", 0.85),
        ],
        account_type_map={
            "Income": "REV-FEES",
            "Expense": "OPEX-GA",
            "Cost of Goods Sold": "COGS-PAYMENTS",
            "Bank": "ASSET-CASH",
        },
    ),
    BusinessType.HARDWARE: IndustryPatterns(
        rules=[
            IndustryRule("manufacturer|factory|supplier|component", "COGS-MATERIALS", 0.9),
            IndustryRule("shipping|logistics|freight|customs", "COGS-SHIPPING", 0.9),
            IndustryRule("warehouse|storage|inventory", "COGS-INVENTORY", 0.85),
        ],
        account_type_map={
            "Income": "REV-PRODUCT",
            "Expense": "OPEX-GA",
            "Cost of Goods Sold": "COGS-MATERIALS",
            "Bank": "ASSET-CASH",
            "Inventory Asset": "ASSET-INVENTORY",
        },
    ),
    BusinessType.HEALTHCARE: IndustryPatterns(
        rules=[
            IndustryRule("insurance|medicare|medicaid|united health", "REV-REIMBURSE", 0.9),
            IndustryRule("medical supplies|pharmaceutical|drugs", "COGS-SUPPLIES", 0.9),
            IndustryRule("ehr|epic|cerner|athenahealth", "OPEX-RD", 0.85),
        ],
        account_type_map={
            "Income": "REV-REIMBURSE",
            "Expense": "OPEX-GA",
            "Cost of Goods Sold": "COGS-SUPPLIES",
            "Bank": "ASSET-CASH",
        },
    ),
    BusinessType.FINTECH: IndustryPatterns(
        rules=[
            IndustryRule("transaction fee|interchange|processing", "REV-FEES", 0.9),
            IndustryRule("plaid|stripe|dwolla|synapse", "COGS-PLATFORM", 0.9),
            IndustryRule("compliance|kyc|aml|fraud detection", "OPEX-COMPLIANCE", 0.9),
        ],
        account_type_map={
            "Income": "REV-FEES",
            "Expense": "OPEX-GA",
            "Cost of Goods Sold": "COGS-PLATFORM",
            "Bank": "ASSET-CASH",
        },
    ),
    BusinessType.OTHER: IndustryPatterns(
        rules=[
            IndustryRule("payroll|salary|wages", "OPEX-PAYROLL", 0.9),
            IndustryRule("rent|lease|office space", "OPEX-RENT", 0.95),
            IndustryRule("insurance|liability|coverage", "OPEX-INSURANCE", 0.9),
            IndustryRule("legal|attorney|law firm", "OPEX-LEGAL", 0.9),
            IndustryRule("accounting|bookkeeping|cpa", "OPEX-ACCOUNTING", 0.9),
        ],
        account_type_map={
            "Income": "REV-OTHER",
            "Expense": "OPEX-GA",
            "Cost of Goods Sold": "COGS-OTHER",
            "Bank": "ASSET-CASH",
        },
    ),
}

# code -> (display name, account type)
CANONICAL_ACCOUNT_NAMES = {
    "REV-ARR": ("Recurring Revenue", "Income"),
    "REV-SERVICES": ("Services Revenue", "Income"),
    "REV-PRODUCT": ("Product Revenue", "Income"),
    "REV-FEES": ("Fee Revenue", "Income"),
    "REV-REIMBURSE": ("Reimbursement Revenue", "Income"),
    "REV-OTHER": ("Other Revenue", "Income"),
    "COGS-HOST": ("Hosting & Infrastructure", "Cost of Goods Sold"),
    "COGS-LABOR": ("Contract Labor", "Cost of Goods Sold"),
    "COGS-PLATFORM": ("Platform Costs", "Cost of Goods Sold"),
    "COGS-SHIPPING": ("Shipping & Fulfillment", "Cost of Goods Sold"),
    "COGS-INVENTORY": ("Inventory Costs", "Cost of Goods Sold"),
    "COGS-PAYMENTS": ("Payment Processing", "Cost of Goods Sold"),
    "COGS-MATERIALS": ("Materials & Components", "Cost of Goods Sold"),
    "COGS-SUPPLIES": ("Medical Supplies", "Cost of Goods Sold"),
    "COGS-OTHER": ("Other Cost of Sales", "Cost of Goods Sold"),
    "OPEX-RD": ("Research & Development", "Expense"),
    "OPEX-SALES": ("Sales", "Expense"),
    "OPEX-MKTG": ("Marketing", "Expense"),
    "OPEX-PAYROLL": ("Payroll", "Expense"),
    "OPEX-GA": ("General & Administrative", "Expense"),
    "OPEX-COMPLIANCE": ("Compliance", "Expense"),
    "OPEX-RENT": ("Rent", "Expense"),
    "OPEX-INSURANCE": ("Insurance", "Expense"),
    "OPEX-LEGAL": ("Legal", "Expense"),
    "OPEX-ACCOUNTING": ("Accounting", "Expense"),
    "ASSET-CASH": ("Cash", "Bank"),
    "ASSET-AR": ("Accounts Receivable", "Accounts Receivable"),
    "ASSET-INVENTORY": ("Inventory", "Inventory Asset"),
    "LIAB-AP": ("Accounts Payable", "Accounts Payable"),
}

COMMON_CODES = [
    "ASSET-CASH", "ASSET-AR", "LIAB-AP", "OPEX-GA", "OPEX-PAYROLL",
    "OPEX-RENT", "OPEX-INSURANCE", "OPEX-LEGAL", "OPEX-ACCOUNTING",
]

SEED_SOURCE_SYSTEM = "seed"


def patterns_for(business_type) -> IndustryPatterns:
    try:
        return INDUSTRY_PATTERNS[BusinessType(business_type)]
    except ValueError:
        return INDUSTRY_PATTERNS[BusinessType.OTHER]


def canonical_catalogue(business_type) -> List[CanonicalAccount]:
    """
    Canonical accounts for one vertical: every code its rules and type map
    reference, plus the accounts every business has.
    """
    business_type = BusinessType(business_type)
    patterns = patterns_for(business_type)
    codes = [rule.canonical_code for rule in patterns.rules]
    codes += list(patterns.account_type_map.values()) + COMMON_CODES
    return [
        CanonicalAccount(
            id=f"{business_type.value}:{code}",
            code=code,
            name=CANONICAL_ACCOUNT_NAMES[code][0],
            account_type=CANONICAL_ACCOUNT_NAMES[code][1],
            business_type=business_type,
        )
        for code in dict.fromkeys(codes)
    ]


def match_rule(text: str, rules: List[IndustryRule]) -> Optional[IndustryRule]:
    """First rule whose pattern occurs anywhere in text, case-insensitively."""
    for rule in rules:
        if re.search(rule.pattern, text, re.IGNORECASE):
            return rule
    return None


class COAMapper:
    """Maps imported ledger accounts (and transaction text) onto canonical accounts"""

    def __init__(self, ledger: LedgerClient, registry, config: Optional[Dict] = None):
        """
        Args:
            ledger: Ledger client
            registry: ModelRegistry providing per-organization classifiers
            config: account_classifier config section
        """
        self.ledger = ledger
        self.registry = registry
        self.config = config or {}
        self.auto_map_threshold = self.config.get("auto_map_threshold", AUTO_MAP_CONFIDENCE_THRESHOLD)

    def _business_type(self, organization_id: str) -> BusinessType:
        organization = self.ledger.get_organization(organization_id)
        return BusinessType(organization.business_type) if organization else BusinessType.OTHER

    def _accounts_by_code(self, business_type: BusinessType) -> Dict[str, CanonicalAccount]:
        return {a.code: a for a in self.ledger.list_canonical_accounts(business_type.value)}

    def auto_map(self, organization_id: str) -> AutoMapSummary:
        """
        Map every pending imported account of an organization.

        Rules first (first match wins), then the account-type default, then
        the classifier. Anything not auto-accepted goes to review, with a
        pending feedback item when a suggestion exists.

        Args:
            organization_id: Organization ID

        Returns:
            AutoMapSummary with per-account results
        """
        business_type = self._business_type(organization_id)
        patterns = patterns_for(business_type)
        by_code = self._accounts_by_code(business_type)
        by_id = {a.id: a for a in self.ledger.list_canonical_accounts()}
        classifier = self.registry.classifier(organization_id)

        logger.info("Auto-mapping imported accounts", organization_id=organization_id,
                    business_type=business_type.value)

        summary = AutoMapSummary()
        for account in self.ledger.list_imported_accounts(organization_id, MappingStatus.PENDING):
            mapped_id: Optional[str] = None
            confidence = 0.0
            status = MappingStatus.NEEDS_REVIEW
            source = "none"

            rule = match_rule(account.account_name, patterns.rules)
            if rule and rule.canonical_code in by_code:
                mapped_id = by_code[rule.canonical_code].id
                confidence = rule.confidence
                status = MappingStatus.AUTO_MAPPED if confidence >= self.auto_map_threshold else MappingStatus.NEEDS_REVIEW
                source = "rule"

            if mapped_id is None and account.account_type:
                default_code = patterns.account_type_map.get(account.account_type)
                if default_code in by_code:
                    mapped_id = by_code[default_code].id
                    confidence = TYPE_MAP_CONFIDENCE
                    status = MappingStatus.NEEDS_REVIEW
                    source = "type_map"

            if mapped_id is None:
                suggestion = classifier.classify(account.account_name)
                if suggestion is not None:
                    mapped_id = suggestion.canonical_account_id
                    confidence = suggestion.confidence
                    status = MappingStatus.AUTO_MAPPED if confidence >= self.auto_map_threshold else MappingStatus.NEEDS_REVIEW
                    source = "ml"

            self.ledger.update_imported_account(
                account.id,
                mapped_canonical_account_id=mapped_id,
                mapping_confidence=round(confidence, 3),
                mapping_status=status,
            )

            if status == MappingStatus.AUTO_MAPPED:
                summary.auto_mapped += 1
            else:
                summary.needs_review += 1
                if mapped_id is not None:
                    self.ledger.add_mapping_feedback(MappingFeedback(
                        organization_id=organization_id,
                        source_account_name=account.account_name,
                        source_system=account.source_system,
                        suggested_canonical_account_id=mapped_id,
                        original_confidence=round(confidence, 3),
                        status=FeedbackStatus.PENDING,
                    ))

            account_mappings.labels(status=status.value, source=source).inc()
            mapped = by_id.get(mapped_id) if mapped_id else None
            summary.results.append(MappingResult(
                account_name=account.account_name,
                mapped_to=mapped.name if mapped else None,
                confidence=confidence,
                status=status,
            ))

        logger.info(
            "Auto-mapping complete",
            organization_id=organization_id,
            auto_mapped=summary.auto_mapped,
            needs_review=summary.needs_review,
        )
        return summary

    def update_account_mapping(self, imported_account_id: str, canonical_account_id: str) -> TrainOutcome:
        """
        Record a manual mapping and feed it straight back into the classifier.

        Raises:
            LedgerError: If the imported account does not exist
        """
        account = self.ledger.get_imported_account(imported_account_id)
        if account is None:
            raise LedgerError(f"Imported account not found: {imported_account_id}")

        self.ledger.update_imported_account(
            imported_account_id,
            mapped_canonical_account_id=canonical_account_id,
            mapping_confidence=1.0,
            mapping_status=MappingStatus.MANUAL,
        )
        self.ledger.upsert_account_mapping(AccountMapping(
            organization_id=account.organization_id,
            canonical_account_id=canonical_account_id,
            source_account_name=account.account_name,
            source_account_code=account.account_code,
            source_system=account.source_system,
            confidence_score=1.0,
            source=MappingSource.USER,
        ))
        account_mappings.labels(status=MappingStatus.MANUAL.value, source="user").inc()
        logger.info(
            "Manual account mapping recorded",
            organization_id=account.organization_id,
            imported_account_id=imported_account_id,
            canonical_account_id=canonical_account_id,
        )
        return self.registry.classifier(account.organization_id).train()

    def seed_classifier_from_industry_patterns(self, organization_id: str,
                                               business_type: Optional[BusinessType] = None) -> Dict:
        """
        Write one rule mapping per pattern alternative, then train the classifier.

        Existing mappings for the same name are left alone.

        Returns:
            {"seeded_mappings": n, "business_type": str, "training": TrainOutcome}
        """
        business_type = BusinessType(business_type) if business_type else self._business_type(organization_id)
        patterns = patterns_for(business_type)
        by_code = self._accounts_by_code(business_type)
        existing = {
            (m.source_account_name, m.source_system)
            for m in self.ledger.list_account_mappings(organization_id)
        }

        seeded = 0
        for rule in patterns.rules:
            canonical = by_code.get(rule.canonical_code)
            if canonical is None:
                continue
            for part in rule.pattern.split("|"):
                name = part.strip()
                if (name, SEED_SOURCE_SYSTEM) in existing:
                    continue
                self.ledger.upsert_account_mapping(AccountMapping(
                    organization_id=organization_id,
                    canonical_account_id=canonical.id,
                    source_account_name=name,
                    source_system=SEED_SOURCE_SYSTEM,
                    confidence_score=rule.confidence,
                    source=MappingSource.RULE,
                    updated_at=datetime.now(),
                ))
                existing.add((name, SEED_SOURCE_SYSTEM))
                seeded += 1

        training = self.registry.classifier(organization_id).train()
        logger.info(
            "Seeded classifier from industry patterns",
            organization_id=organization_id,
            business_type=business_type.value,
            seeded_mappings=seeded,
        )
        return {"seeded_mappings": seeded, "business_type": business_type.value, "training": training}

    def get_imported_accounts(self, organization_id: str) -> List[ImportedAccountView]:
        names = {a.id: a.name for a in self.ledger.list_canonical_accounts()}
        return [
            ImportedAccountView(
                id=a.id,
                account_name=a.account_name,
                account_type=a.account_type,
                source_system=a.source_system,
                mapped_to=names.get(a.mapped_canonical_account_id),
                confidence=a.mapping_confidence,
                status=a.mapping_status,
            )
            for a in self.ledger.list_imported_accounts(organization_id)
        ]

    def classify_text(self, organization_id: str, text: str,
                      account_type: Optional[str] = None) -> Optional[AccountClassification]:
        """
        Classify free text (a transaction's vendor or memo).

        Rule match, then the classifier, then the account-type default.

        Args:
            organization_id: Organization ID
            text: Text to classify
            account_type: Ledger type used for the default, e.g. "Expense"

        Returns:
            AccountClassification, or None if nothing applies
        """
        business_type = self._business_type(organization_id)
        patterns = patterns_for(business_type)
        by_code = self._accounts_by_code(business_type)

        rule = match_rule(text, patterns.rules)
        if rule and rule.canonical_code in by_code:
            account = by_code[rule.canonical_code]
            return AccountClassification(
                canonical_account_id=account.id,
                canonical_code=account.code,
                canonical_name=account.name,
                confidence=rule.confidence,
                source="rule",
                matched_examples=[rule.pattern],
            )

        suggestion = self.registry.classifier(organization_id).classify(text)
        if suggestion is not None:
            return suggestion

        default_code = patterns.account_type_map.get(account_type) if account_type else None
        if default_code in by_code:
            account = by_code[default_code]
            return AccountClassification(
                canonical_account_id=account.id,
                canonical_code=account.code,
                canonical_name=account.name,
                confidence=TYPE_MAP_CONFIDENCE,
                source="type_map",
            )
        return None

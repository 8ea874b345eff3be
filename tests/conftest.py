"""Shared fixtures: in-memory ledger, model store and synthetic transaction builders"""

import itertools
from datetime import date, timedelta

import pytest

from src.constants import BusinessType
from src.ml.coa_mapper import canonical_catalogue
from src.ml.registry import ModelRegistry
from src.models.transaction import Organization, Transaction
from src.storage.model_store import InMemoryModelStore, TrainingHistory
from src.tools.ledger_client import InMemoryLedger

ORG_ID = "org_acme"

# Monthly AWS bill, December 2024 through May 2025, then the June jump
AWS_HISTORY = [8100.0, 8200.0, 8250.0, 8300.0, 8280.0, 8340.0]
AWS_SPIKE = 10260.0
OFFICE_DAILY = 150.0
MONTHLY_REVENUE = 20000.0

HISTORY_START = date(2024, 12, 2)
HISTORY_END = date(2025, 5, 31)
SPIKE_MONTH_END = date(2025, 6, 30)


def each_day(start: date, end: date):
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


@pytest.fixture
def org_id():
    return ORG_ID


@pytest.fixture
def ledger():
    """Ledger with one SaaS organization and every vertical's chart of accounts"""
    ledger = InMemoryLedger()
    ledger.add_organization(Organization(id=ORG_ID, name="Acme Analytics", business_type=BusinessType.SAAS))
    for business_type in BusinessType:
        ledger.add_canonical_accounts(canonical_catalogue(business_type))
    return ledger


@pytest.fixture
def store():
    return InMemoryModelStore()


@pytest.fixture
def history():
    return TrainingHistory()


@pytest.fixture
def registry(ledger, store):
    return ModelRegistry(ledger, store)


@pytest.fixture
def add_txn(ledger):
    """add_txn(day, amount, vendor="", category_id=None, **fields) -> Transaction"""
    counter = itertools.count(1)

    def _add(day, amount, vendor="", category_id=None, organization_id=ORG_ID, **fields):
        txn = Transaction(
            txn_id=f"txn_{next(counter):05d}",
            organization_id=organization_id,
            date=day,
            amount=amount,
            vendor=vendor,
            category_id=category_id,
            **fields
        )
        ledger.add_transactions([txn])
        return txn

    return _add


@pytest.fixture
def aws_spike_ledger(ledger, add_txn):
    """
    Six months of steady SaaS spending, then a June AWS bill of $10,260.

    Office supplies post every day at a flat $150, revenue lands on the 1st,
    AWS bills on the 15th.
    """
    for day in each_day(HISTORY_START, SPIKE_MONTH_END):
        add_txn(day, -OFFICE_DAILY, vendor="Office Supplies Co", category_id="OPEX-GA")

    months = [date(2024, 12, 15)] + [date(2025, m, 15) for m in range(1, 6)]
    for day, amount in zip(months, AWS_HISTORY):
        add_txn(day, -amount, vendor="AWS", category_id="COGS-HOST")
    add_txn(date(2025, 6, 15), -AWS_SPIKE, vendor="AWS", category_id="COGS-HOST")

    for month in range(1, 7):
        add_txn(date(2025, month, 1), MONTHLY_REVENUE, vendor="STRIPE PAYOUT", category_id="REV-ARR")
    return ledger


@pytest.fixture
def recent_spending(ledger, add_txn):
    """120 days of $150 daily spend ending today, enough to train the anomaly model"""
    today = date.today()
    for offset in range(120):
        add_txn(today - timedelta(days=offset), -OFFICE_DAILY, vendor="Office Supplies Co", category_id="OPEX-GA")
    return ledger

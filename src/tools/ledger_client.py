"""Ledger client: read-only transaction feed plus the annotation/COA records the models use.

The production ledger lives behind an external API; InMemoryLedger implements
the same interface over pydantic records and is what the CLI and tests use,
loaded from JSON fixtures.
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from src.constants import FeedbackStatus, MappingStatus
from src.models.account import (
    AccountMapping,
    CanonicalAccount,
    ImportedAccount,
    MappingFeedback,
)
from src.models.transaction import ANNOTATION_FIELDS, Organization, Transaction
from src.utils.errors import LedgerError
from src.utils.logging import get_logger

logger = get_logger(__name__)

TRANSACTION_COLUMNS = [
    'txn_id', 'organization_id', 'date', 'amount', 'vendor', 'description',
    'vendor_id', 'category_id', 'source', 'vendor_normalized', 'is_recurring',
    'classification_confidence',
]


def transactions_to_frame(transactions: List[Transaction]) -> pd.DataFrame:
    """Transactions as a DataFrame with a datetime64 'date' column."""
    df = pd.DataFrame([t.model_dump() for t in transactions], columns=TRANSACTION_COLUMNS)
    df['date'] = pd.to_datetime(df['date'])
    df['amount'] = df['amount'].astype(float)
    return df


class LedgerClient(ABC):
    """Everything the intelligence layer reads from (or annotates in) the ledger"""

    # Organizations
    @abstractmethod
    def list_organizations(self, limit: int = 100) -> List[Organization]:
        ...

    @abstractmethod
    def get_organization(self, organization_id: str) -> Optional[Organization]:
        ...

    # Transactions
    @abstractmethod
    def get_transactions(self, organization_id: str, since: Optional[date] = None,
                         until: Optional[date] = None, limit: Optional[int] = None) -> pd.DataFrame:
        ...

    @abstractmethod
    def annotate_transaction(self, txn_id: str, **fields: Any) -> None:
        ...

    @abstractmethod
    def get_vendor_examples(self, organization_id: str, limit: int) -> List[Tuple[str, str]]:
        ...

    @abstractmethod
    def count_vendor_normalizations(self, organization_id: str, since: datetime) -> int:
        ...

    # Chart of accounts
    @abstractmethod
    def list_canonical_accounts(self, business_type: Optional[str] = None) -> List[CanonicalAccount]:
        ...

    @abstractmethod
    def list_imported_accounts(self, organization_id: str,
                               status: Optional[MappingStatus] = None) -> List[ImportedAccount]:
        ...

    @abstractmethod
    def get_imported_account(self, imported_account_id: str) -> Optional[ImportedAccount]:
        ...

    @abstractmethod
    def update_imported_account(self, imported_account_id: str, **fields: Any) -> None:
        ...

    @abstractmethod
    def upsert_account_mapping(self, mapping: AccountMapping) -> None:
        ...

    @abstractmethod
    def list_account_mappings(self, organization_id: str) -> List[AccountMapping]:
        ...

    @abstractmethod
    def add_mapping_feedback(self, feedback: MappingFeedback) -> bool:
        ...

    @abstractmethod
    def list_mapping_feedback(self, organization_id: str,
                              status: Optional[FeedbackStatus] = None) -> List[MappingFeedback]:
        ...

    @abstractmethod
    def count_mapping_feedback(self, organization_id: str, since: datetime) -> int:
        ...

    # Free-form user feedback on insights ("context notes")
    @abstractmethod
    def count_context_notes(self, organization_id: str, since: datetime) -> int:
        ...


class InMemoryLedger(LedgerClient):
    """Ledger held in process memory"""

    def __init__(self):
        self.organizations: Dict[str, Organization] = {}
        self.transactions: Dict[str, Transaction] = {}
        self.canonical_accounts: Dict[str, CanonicalAccount] = {}
        self.imported_accounts: Dict[str, ImportedAccount] = {}
        self.account_mappings: Dict[Tuple[str, str, str], AccountMapping] = {}
        self.mapping_feedback: List[MappingFeedback] = []
        self.context_notes: List[Dict[str, Any]] = []
        self.annotated_at: Dict[str, datetime] = {}
        self._lock = threading.RLock()

    # -- loading -------------------------------------------------------------

    def add_organization(self, organization: Organization) -> None:
        self.organizations[organization.id] = organization

    def add_transactions(self, transactions: List[Transaction]) -> None:
        with self._lock:
            for txn in transactions:
                self.transactions[txn.txn_id] = txn

    def add_canonical_accounts(self, accounts: List[CanonicalAccount]) -> None:
        for account in accounts:
            self.canonical_accounts[account.id] = account

    def add_imported_accounts(self, accounts: List[ImportedAccount]) -> None:
        for account in accounts:
            self.imported_accounts[account.id] = account

    def add_context_note(self, organization_id: str, note: str,
                         created_at: Optional[datetime] = None) -> None:
        self.context_notes.append({
            "organization_id": organization_id,
            "note": note,
            "created_at": created_at or datetime.now(),
        })

    # -- organizations -------------------------------------------------------

    def list_organizations(self, limit: int = 100) -> List[Organization]:
        return list(self.organizations.values())[:limit]

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        return self.organizations.get(organization_id)

    # -- transactions --------------------------------------------------------

    def get_transactions(self, organization_id: str, since: Optional[date] = None,
                         until: Optional[date] = None, limit: Optional[int] = None) -> pd.DataFrame:
        """
        Transactions of one organization, oldest first.

        Args:
            organization_id: Organization ID
            since: Inclusive lower date bound
            until: Inclusive upper date bound
            limit: Maximum rows (most recent kept)

        Returns:
            DataFrame with TRANSACTION_COLUMNS
        """
        with self._lock:
            rows = [
                t for t in self.transactions.values()
                if t.organization_id == organization_id
                and (since is None or t.date >= since)
                and (until is None or t.date <= until)
            ]
        rows.sort(key=lambda t: (t.date, t.txn_id))
        if limit is not None:
            rows = rows[-limit:]
        return transactions_to_frame(rows)

    def annotate_transaction(self, txn_id: str, **fields: Any) -> None:
        """
        Write annotation fields back onto a transaction.

        Raises:
            LedgerError: Unknown transaction, or a non-annotation field
        """
        illegal = set(fields) - ANNOTATION_FIELDS
        if illegal:
            raise LedgerError(f"Transaction fields are read-only: {sorted(illegal)}")
        with self._lock:
            txn = self.transactions.get(txn_id)
            if txn is None:
                raise LedgerError(f"Transaction not found: {txn_id}")
            self.transactions[txn_id] = txn.model_copy(update=fields)
            if "vendor_normalized" in fields:
                self.annotated_at[txn_id] = datetime.now()

    def get_vendor_examples(self, organization_id: str, limit: int) -> List[Tuple[str, str]]:
        """Confirmed (raw, normalized) vendor pairs where the two differ."""
        with self._lock:
            pairs = [
                (t.vendor, t.vendor_normalized)
                for t in self.transactions.values()
                if t.organization_id == organization_id
                and t.vendor and t.vendor_normalized
                and t.vendor != t.vendor_normalized
            ]
        return pairs[:limit]

    def count_vendor_normalizations(self, organization_id: str, since: datetime) -> int:
        with self._lock:
            return sum(
                1 for t in self.transactions.values()
                if t.organization_id == organization_id
                and t.vendor_normalized
                and self.annotated_at.get(t.txn_id, datetime.combine(t.date, datetime.min.time())) >= since
            )

    # -- chart of accounts ---------------------------------------------------

    def list_canonical_accounts(self, business_type: Optional[str] = None) -> List[CanonicalAccount]:
        return [
            a for a in self.canonical_accounts.values()
            if business_type is None or a.business_type == business_type
        ]

    def list_imported_accounts(self, organization_id: str,
                               status: Optional[MappingStatus] = None) -> List[ImportedAccount]:
        return [
            a for a in self.imported_accounts.values()
            if a.organization_id == organization_id and (status is None or a.mapping_status == status)
        ]

    def get_imported_account(self, imported_account_id: str) -> Optional[ImportedAccount]:
        return self.imported_accounts.get(imported_account_id)

    def update_imported_account(self, imported_account_id: str, **fields: Any) -> None:
        with self._lock:
            account = self.imported_accounts.get(imported_account_id)
            if account is None:
                raise LedgerError(f"Imported account not found: {imported_account_id}")
            fields.setdefault("updated_at", datetime.now())
            self.imported_accounts[imported_account_id] = account.model_copy(update=fields)

    def upsert_account_mapping(self, mapping: AccountMapping) -> None:
        key = (mapping.organization_id, mapping.source_account_name, mapping.source_system)
        with self._lock:
            self.account_mappings[key] = mapping

    def list_account_mappings(self, organization_id: str) -> List[AccountMapping]:
        return [m for m in self.account_mappings.values() if m.organization_id == organization_id]

    def add_mapping_feedback(self, feedback: MappingFeedback) -> bool:
        """Insert feedback; a pending item for the same account is not duplicated."""
        with self._lock:
            for existing in self.mapping_feedback:
                if (existing.organization_id == feedback.organization_id
                        and existing.source_account_name == feedback.source_account_name
                        and existing.source_system == feedback.source_system
                        and existing.status == feedback.status == FeedbackStatus.PENDING):
                    return False
            self.mapping_feedback.append(feedback)
            return True

    def list_mapping_feedback(self, organization_id: str,
                              status: Optional[FeedbackStatus] = None) -> List[MappingFeedback]:
        return [
            f for f in self.mapping_feedback
            if f.organization_id == organization_id and (status is None or f.status == status)
        ]

    def count_mapping_feedback(self, organization_id: str, since: datetime) -> int:
        return sum(
            1 for f in self.mapping_feedback
            if f.organization_id == organization_id and f.created_at >= since
        )

    def count_context_notes(self, organization_id: str, since: datetime) -> int:
        return sum(
            1 for n in self.context_notes
            if n["organization_id"] == organization_id and n["created_at"] >= since
        )


def load_ledger_from_json(path: str) -> InMemoryLedger:
    """
    Build an InMemoryLedger from a JSON fixture.

    Expected top-level keys (all optional): organizations, transactions,
    canonical_accounts, imported_accounts, account_mappings, mapping_feedback,
    context_notes.

    Args:
        path: Fixture file path

    Returns:
        Populated ledger

    Raises:
        LedgerError: If the file is missing or malformed
    """
    fixture = Path(path)
    if not fixture.exists():
        raise LedgerError(f"Ledger fixture not found: {path}")

    try:
        with open(fixture, 'r') as f:
            data = json.load(f)

        ledger = InMemoryLedger()
        for org in data.get("organizations", []):
            ledger.add_organization(Organization.model_validate(org))
        ledger.add_transactions([Transaction.model_validate(t) for t in data.get("transactions", [])])
        ledger.add_canonical_accounts(
            [CanonicalAccount.model_validate(a) for a in data.get("canonical_accounts", [])]
        )
        ledger.add_imported_accounts(
            [ImportedAccount.model_validate(a) for a in data.get("imported_accounts", [])]
        )
        for mapping in data.get("account_mappings", []):
            ledger.upsert_account_mapping(AccountMapping.model_validate(mapping))
        for feedback in data.get("mapping_feedback", []):
            ledger.add_mapping_feedback(MappingFeedback.model_validate(feedback))
        for note in data.get("context_notes", []):
            ledger.add_context_note(
                note["organization_id"], note.get("note", ""),
                datetime.fromisoformat(note["created_at"]) if note.get("created_at") else None,
            )
    except (ValueError, KeyError, TypeError) as e:
        raise LedgerError(f"Malformed ledger fixture {path}: {e}")

    logger.info(
        "Loaded ledger fixture",
        path=str(path),
        organizations=len(ledger.organizations),
        transactions=len(ledger.transactions),
    )
    return ledger

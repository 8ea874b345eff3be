"""Chart-of-accounts mapping data models"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Optional
from src.constants import (
    BusinessType,
    MappingStatus,
    FeedbackStatus,
    MappingSource,
    MODEL_SCHEMA_VERSION,
)


class CanonicalAccount(BaseModel):
    """Normalized chart-of-accounts entry"""

    id: str
    code: str
    name: str
    account_type: str
    business_type: BusinessType


class ImportedAccount(BaseModel):
    """Ledger account pulled from an accounting system"""

    id: str
    organization_id: str
    source_system: str = Field(..., description="quickbooks, xero, csv, ...")
    source_account_id: str
    account_name: str
    account_code: Optional[str] = None
    account_type: Optional[str] = Field(None, description="Source system type, e.g. 'Expense'")
    mapped_canonical_account_id: Optional[str] = None
    mapping_confidence: float = 0.0
    mapping_status: MappingStatus = MappingStatus.PENDING
    updated_at: Optional[datetime] = None


class AccountMapping(BaseModel):
    """Accepted source-name to canonical-account mapping"""

    organization_id: str
    canonical_account_id: str
    source_account_name: str
    source_system: str
    source_account_code: Optional[str] = None
    confidence_score: float = Field(..., ge=0, le=1)
    source: MappingSource
    is_active: bool = True
    updated_at: datetime = Field(default_factory=datetime.now)


class MappingFeedback(BaseModel):
    """Suggested mapping awaiting or carrying human review"""

    organization_id: str
    source_account_name: str
    source_system: str
    suggested_canonical_account_id: Optional[str] = None
    corrected_canonical_account_id: Optional[str] = None
    original_confidence: float = 0.0
    status: FeedbackStatus = FeedbackStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.now)


class ClassifierClass(BaseModel):
    """Centroid of all training names mapped to one canonical account"""

    canonical_account_id: str
    canonical_code: str
    canonical_name: str
    centroid: Dict[int, float]
    source_names: List[str] = Field(default_factory=list)


class TrainedClassifierModel(BaseModel):
    """Persisted per-organization account classifier"""

    schema_version: int = MODEL_SCHEMA_VERSION
    version: str
    trained_at: datetime
    organization_id: str
    example_count: int
    vocabulary: List[str]
    idf: Dict[int, float]
    classes: List[ClassifierClass]


class AccountClassification(BaseModel):
    """Classifier or rule suggestion for one piece of account text"""

    canonical_account_id: str
    canonical_code: str
    canonical_name: str
    confidence: float = Field(..., ge=0, le=1)
    source: str = Field(..., description="rule, type_map, ml_local")
    matched_examples: List[str] = Field(default_factory=list)


class MappingResult(BaseModel):
    account_name: str
    mapped_to: Optional[str] = None
    confidence: float
    status: MappingStatus


class AutoMapSummary(BaseModel):
    auto_mapped: int = 0
    needs_review: int = 0
    results: List[MappingResult] = Field(default_factory=list)


class ImportedAccountView(BaseModel):
    """Imported account joined with its canonical mapping name"""

    id: str
    account_name: str
    account_type: Optional[str]
    source_system: str
    mapped_to: Optional[str]
    confidence: float
    status: MappingStatus

"""Vendor matcher data models"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List
from src.constants import MODEL_SCHEMA_VERSION


class VendorCluster(BaseModel):
    """All confirmed raw spellings of one canonical vendor"""

    normalized_name: str
    centroid: Dict[int, float] = Field(..., description="Mean TF-IDF vector, keyed by token id")
    variants: List[str] = Field(default_factory=list, description="Up to 20 raw spellings")
    example_count: int


class TrainedVendorModel(BaseModel):
    """Persisted per-organization vendor vectorizer and clusters"""

    schema_version: int = MODEL_SCHEMA_VERSION
    version: str
    trained_at: datetime
    organization_id: str
    example_count: int
    vocabulary: List[str] = Field(..., description="Token strings, index = token id")
    idf: Dict[int, float]
    clusters: List[VendorCluster]


class VendorMatch(BaseModel):
    """Committed normalization of a raw vendor string"""

    normalized_name: str
    confidence: float = Field(..., ge=0, le=1)
    matched_variants: List[str] = Field(default_factory=list)
    source: str = "ml_vendor"

    class Config:
        json_schema_extra = {
            "example": {
                "normalized_name": "AWS",
                "confidence": 0.91,
                "matched_variants": ["AMAZON WEB SERVICES", "AWS EMEA", "AMZN WEB SVCS"],
                "source": "ml_vendor",
            }
        }


class SimilarVendor(BaseModel):
    normalized_name: str
    similarity: float
    variants: List[str] = Field(default_factory=list)

"""Industry benchmark data models"""

from pydantic import BaseModel, Field


class IndustryBenchmark(BaseModel):
    """Anonymized distribution of one metric across a business vertical"""

    metric_name: str
    p10: float = 0.0
    p25: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0
    mean: float = 0.0
    std_dev: float = 0.0
    sample_size: int = Field(0, ge=0)

    class Config:
        json_schema_extra = {
            "example": {
                "metric_name": "burn_rate",
                "p10": 15000,
                "p25": 30000,
                "p50": 60000,
                "p75": 120000,
                "p90": 250000,
                "sample_size": 0,
            }
        }

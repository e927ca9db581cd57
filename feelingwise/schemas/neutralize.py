"""
API Schemas — Request and Response Models

Pydantic models for the FeelingWise bridge API.
"""

from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, Field


# ============================================================
# NEUTRALIZE
# ============================================================

class NeutralizeRequest(BaseModel):
    """POST /neutralize request body."""
    text: str = Field(..., description="The fragment to neutralize (10-5,000 characters).")
    handle: Optional[str] = Field(
        None, max_length=256,
        description="Opaque id used for de-duplication. Generated when omitted.",
    )

    model_config = {"json_schema_extra": {"examples": [
        {"text": "WAKE UP!!! They want to DESTROY everything!!!", "handle": "post-4411"},
    ]}}


class NeutralizeBatchRequest(BaseModel):
    """POST /neutralize/batch request body."""
    items: list[NeutralizeRequest] = Field(..., min_length=1, max_length=100)


class DiffSpan(BaseModel):
    type: str
    text: str
    orig_start: Optional[int] = None
    orig_end: Optional[int] = None
    new_start: Optional[int] = None
    new_end: Optional[int] = None


class FragmentResponse(BaseModel):
    """One terminal fragment result."""
    handle: str
    original: str
    neutralized: str
    techniques: list[str]
    severity: int = Field(..., ge=0, le=10)
    from_cache: bool
    source: str
    ok: bool = True
    error: Optional[str] = None
    diff_spans: list[DiffSpan] = []


class NeutralizeBatchResponse(BaseModel):
    """POST /neutralize/batch response body."""
    results: list[FragmentResponse]
    total: int
    processed: int
    skipped: int
    rejected: int
    failed: int


# ============================================================
# TAXONOMY
# ============================================================

class TechniqueInfo(BaseModel):
    name: str
    label: str
    description: str
    vulnerability: int


class TechniquesResponse(BaseModel):
    techniques: list[TechniqueInfo]
    severity_map: dict[int, int]


class PatternInfo(BaseModel):
    id: str
    technique: str
    label: str
    description: str


class PatternsResponse(BaseModel):
    total: int
    patterns: list[PatternInfo]


# ============================================================
# CACHE
# ============================================================

class CacheStatsResponse(BaseModel):
    entries: int
    max_entries: int
    ttl_seconds: float
    hits: int
    misses: int
    evictions: int
    hit_rate: float
    persistent: bool


class CacheClearResponse(BaseModel):
    cleared: int


# ============================================================
# SETTINGS
# ============================================================

class SettingsModel(BaseModel):
    enabled: bool
    auto_neutralize: bool


class SettingsUpdate(BaseModel):
    """PUT /settings request body. Omitted fields are left unchanged."""
    enabled: Optional[bool] = None
    auto_neutralize: Optional[bool] = None


# ============================================================
# HEALTH / STATUS
# ============================================================

class HealthResponse(BaseModel):
    status: str
    version: str
    llm_provider: str


class StatusResponse(BaseModel):
    status: str
    version: str
    llm_provider: str
    llm_healthy: bool
    scheduler: dict
    cache: CacheStatsResponse
    client: dict

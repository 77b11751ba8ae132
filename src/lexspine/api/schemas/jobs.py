"""
Job endpoint bodies.

Request bodies accept the camelCase keys of the public interface
(``fromIndex``) as well as their snake_case names.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StartJobBody(BaseModel):
    """Body of ``POST /jobs``.

    Example:
        {"kind": "dictionary-import", "source": {"source_text": "*casa*, S. f. ...", "format": "asterisk"}}
    """

    kind: str = Field(description="'dictionary-import' | 'corpus-annotate'")
    source: dict[str, Any] = Field(description="Kind-specific source payload")


class ContinueJobBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_index: int = Field(alias="fromIndex", ge=0)


class CancelJobBody(BaseModel):
    reason: str = Field(description="Why the job is being cancelled (at least 5 characters)")


class JobAcceptedSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    total_units: int = Field(alias="totalUnits")


class ChunkReportSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    outcome: str
    cursor: int
    status: str | None = None
    detail: str | None = None


class KillSwitchBody(BaseModel):
    """Body of ``POST /jobs/kill-switch``."""

    model_config = ConfigDict(populate_by_name=True)

    reason: str = Field(description="Why everything is being stopped (at least 5 characters)")
    ttl_minutes: int | None = Field(default=None, alias="ttlMinutes", ge=1, description="Defaults to 30")


class ReprocessBody(BaseModel):
    """Body of ``POST /jobs/reprocess-unclassified``.

    Example:
        {"corpus": "sertanejo", "belowConfidence": 0.8, "dryRun": true}
    """

    model_config = ConfigDict(populate_by_name=True)

    corpus: str | None = Field(default=None, description="Limit to one corpus; all corpora when omitted")
    below_confidence: float | None = Field(default=None, alias="belowConfidence", ge=0.0, le=1.0)
    dry_run: bool = Field(default=False, alias="dryRun")

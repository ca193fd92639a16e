from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordType(str, Enum):
    AC = "ac"
    TEST = "test"
    FLOW = "flow"
    REQUIREMENT = "requirement"
    PATTERN = "pattern"


class RecordMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    created: datetime = Field(default_factory=_utcnow)
    author: Optional[str] = None
    type: RecordType = RecordType.AC


class Record(BaseModel):
    """A stored text with its embedding. Replaced only by upsert on ``id``."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    embedding: List[float] = Field(default_factory=list)
    source_file: str = ""
    metadata: RecordMetadata = Field(default_factory=RecordMetadata)

    @property
    def is_degraded(self) -> bool:
        """True for the empty or all-zero vector left by a failed embedding call."""
        return not any(self.embedding)


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: Record
    score: float


class GeneratedTest(BaseModel):
    test_code: str
    ac_id: str
    ac_text: str
    confidence: float
    reasoning: str
    template: str
    degraded: bool = False


class SimilarFailure(BaseModel):
    test_name: str = ""
    cause: str
    root_cause: Optional[str] = None
    fixed_by: Optional[str] = None


class FailureAnalysis(BaseModel):
    error_message: str
    similar_failures: List[SimilarFailure] = Field(default_factory=list)
    cause: Optional[str] = None
    suggestion: str
    retry: bool
    wait_ms: Optional[int] = None
    degraded: bool = False


class TraceResult(BaseModel):
    test_name: str
    test_path: str
    test_code: str
    related_acs: List[Record]
    confidence: float


class PatternSuggestion(BaseModel):
    name: str
    description: str
    code: str
    usage_count: int = 0
    examples: List[str] = Field(default_factory=list)


class CodeChange(BaseModel):
    file_path: str
    before: str = ""
    after: str = ""
    type: Literal["modified", "added", "deleted"] = "modified"


class RAGStats(BaseModel):
    total_records: int
    embedding_model: str
    vector_store: str
    llm_provider: str
    indexed_acs: int
    indexed_tests: int
    records_by_type: Dict[str, int] = Field(default_factory=dict)
    last_indexed: Optional[datetime] = None

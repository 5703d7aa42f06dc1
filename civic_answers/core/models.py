"""
Data model shared by the pipeline stages.

ContentItem is owned by the ingestion collaborator and read-only here; the
other types are produced per request.
"""

from __future__ import annotations
import datetime
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass(frozen=True)
class ContentItem:
    id: Any
    source_url: str
    title: str
    body_text: str = ""
    embedding: Optional[Sequence[float]] = None
    last_indexed: Optional[datetime.datetime] = None


@dataclass
class Query:
    raw_text: str
    language_code: str = "en"
    pivot_text: str = ""


@dataclass(frozen=True)
class RankedMatch:
    item: ContentItem
    similarity: float

    def to_source(self) -> Dict[str, Any]:
        return {"title": self.item.title, "url": self.item.source_url, "similarity": self.similarity}


class TranslationStatus(str, enum.Enum):
    UNCHANGED = "unchanged"      # source == target, no provider call
    TRANSLATED = "translated"
    PASSTHROUGH = "passthrough"  # provider failed; text is the untranslated input


@dataclass(frozen=True)
class Translation:
    text: str
    status: TranslationStatus
    from_code: str
    to_code: str

    @property
    def degraded(self) -> bool:
        return self.status is TranslationStatus.PASSTHROUGH


RESOLUTION_ANSWER = "answer"
RESOLUTION_TIMEOUT = "timeout"
RESOLUTION_ERROR = "error"
RESOLUTION_INVALID = "invalid_request"


@dataclass
class AnswerResult:
    """Terminal output of one pipeline invocation.

    `to_dict()` is the contract handed to chat/SMS/API callers. A timeout is
    reported with resolution "timeout" so callers can avoid retrying
    immediately against a saturated provider.
    """

    answer_text: str
    language_name: str
    language_code: str
    confidence: float = 0.0
    matches: List[RankedMatch] = field(default_factory=list)
    resolution: str = RESOLUTION_ANSWER
    translation_degraded: bool = False
    answer_source: Optional[str] = None
    request_id: Optional[str] = None
    question_style: Optional[str] = None
    is_follow_up: bool = False
    error: Optional[str] = None

    @property
    def is_timeout(self) -> bool:
        return self.resolution == RESOLUTION_TIMEOUT

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "requestId": self.request_id,
            "resolution": self.resolution,
            "answerText": self.answer_text,
            "detectedLanguageName": self.language_name,
            "languageCode": self.language_code,
            "confidence": self.confidence,
            "sources": [m.to_source() for m in self.matches],
            "translationDegraded": self.translation_degraded,
            "answerSource": self.answer_source,
            "questionStyle": self.question_style,
            "isFollowUp": self.is_follow_up,
        }
        if self.error:
            out["error"] = self.error
        return out

from pydantic import BaseModel, Field
from typing import List, Literal, Optional

API_VERSION = "1.0"

CATEGORIES = ("typo", "baku", "eyd", "konteks")
SEVERITIES = ("low", "medium", "high")

CategoryType = Literal["typo", "baku", "eyd", "konteks"]
SeverityType = Literal["low", "medium", "high"]


class CheckRequest(BaseModel):
    version: str = API_VERSION
    text: str


class Suggestion(BaseModel):
    id: str
    category: CategoryType
    severity: Optional[SeverityType] = None
    message: str
    before: str
    after: str
    start: int = Field(ge=0)
    end: int = Field(gt=0)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class CheckMeta(BaseModel):
    llmCalled: bool
    skippedReason: Optional[str] = None
    modelUsed: str
    textLength: int
    suggestionsCount: int


class CheckResponse(BaseModel):
    version: str = API_VERSION
    textFingerprint: str
    suggestions: List[Suggestion]
    meta: Optional[CheckMeta] = None


class ErrorResponse(BaseModel):
    error: str
    message: str

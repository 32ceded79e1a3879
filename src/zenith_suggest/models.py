import math
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from zenith_suggest.domain.dates import parse_date

ConfidenceLevel = Literal["HIGH", "MEDIUM", "LOW", "VERY_LOW"]
SuggestedAction = Literal["auto_apply", "suggest_strongly", "suggest", "show_option"]
SourceName = Literal["similarity", "pattern", "rule", "user_behavior"]
PatternType = Literal["recurring", "seasonal", "behavioral", "temporal"]


class Transaction(BaseModel):
    date: datetime = Field(default_factory=datetime.now)
    recipient: str = ""
    description: str = ""
    amount: float = 0.0  # negative = expense
    category: str | None = None
    account: str | None = None
    id: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> datetime:
        return parse_date(value)

    @field_validator("recipient", "description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float:
        try:
            amount = float(value)
        except (TypeError, ValueError):
            return 0.0
        return amount if math.isfinite(amount) else 0.0

    @property
    def abs_amount(self) -> float:
        return abs(self.amount)


class Category(BaseModel):
    name: str
    color: str | None = None


class ComponentScore(BaseModel):
    score: float
    reason: str


class SimilarityScore(BaseModel):
    score: float
    reasons: list[str] = Field(default_factory=list)
    components: dict[str, float] = Field(default_factory=dict)


class SimilarityResult(BaseModel):
    transaction: Transaction
    similarity: float
    reasons: list[str] = Field(default_factory=list)
    confidence: float


class SimilarityExample(BaseModel):
    recipient: str
    amount: float
    similarity: float


class CategoryScore(BaseModel):
    category: str
    confidence: float
    avg_similarity: float
    match_count: int
    examples: list[SimilarityExample] = Field(default_factory=list)
    reasoning: str


class PatternResult(BaseModel):
    pattern_type: PatternType
    has_pattern: bool = False
    confidence: float = 0.0
    suggested_category: str | None = None
    reasoning: str = ""
    evidence: dict[str, Any] = Field(default_factory=dict)


class RecurringPattern(PatternResult):
    pattern_type: PatternType = "recurring"
    interval: float | None = None
    interval_type: str | None = None
    last_occurrence: datetime | None = None
    occurrence_count: int = 0

    @property
    def is_recurring(self) -> bool:
        return self.has_pattern


class SeasonalPattern(PatternResult):
    pattern_type: PatternType = "seasonal"
    season: str | None = None

    @property
    def has_seasonal_pattern(self) -> bool:
        return self.has_pattern


class BehavioralPattern(PatternResult):
    pattern_type: PatternType = "behavioral"
    subtype: Literal["day_of_week", "time_of_month", "amount_range"]


class BehavioralPatterns(BaseModel):
    patterns: list[BehavioralPattern] = Field(default_factory=list)


class TemporalPattern(PatternResult):
    pattern_type: PatternType = "temporal"
    window: Literal["end-of-month", "beginning-of-month", "payday"] | None = None


class PatternReport(BaseModel):
    recurring: RecurringPattern
    seasonal: SeasonalPattern
    behavioral: BehavioralPatterns
    temporal: TemporalPattern
    summary: list[str] = Field(default_factory=list)


class PatternSuggestion(BaseModel):
    category: str
    confidence: float
    pattern_type: PatternType
    reasoning: str
    evidence: dict[str, Any] = Field(default_factory=dict)


class _Contribution(BaseModel):
    category: str
    original_confidence: float
    weight: float
    reasoning: str = ""
    evidence: dict[str, Any] = Field(default_factory=dict)

    @property
    def confidence(self) -> float:
        return self.original_confidence * self.weight


class SimilarityContribution(_Contribution):
    source: Literal["similarity"] = "similarity"


class PatternContribution(_Contribution):
    source: Literal["pattern"] = "pattern"
    pattern_type: PatternType


class RuleContribution(_Contribution):
    source: Literal["rule"] = "rule"
    rule_id: int


class UserContribution(_Contribution):
    source: Literal["user_behavior"] = "user_behavior"


Contribution = Annotated[
    SimilarityContribution | PatternContribution | RuleContribution | UserContribution,
    Field(discriminator="source"),
]


class Suggestion(BaseModel):
    category: str
    confidence: float
    sources: list[SourceName] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    evidence: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    confidence_level: ConfidenceLevel | None = None
    suggested_action: SuggestedAction | None = None
    icon: str | None = None
    color: str | None = None
    last_used: datetime | None = None
    usage_count: int = 0
    combined_reasoning: str | None = None


class CategoryUsage(BaseModel):
    category: str
    frequency: int  # percent of the mined transactions
    avg_amount: float
    count: int


class UserPreferences(BaseModel):
    top_categories: list[CategoryUsage] = Field(default_factory=list)
    preferred_categories: list[str] = Field(default_factory=list)
    avoided_categories: list[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=datetime.now)


class FeedbackRecord(BaseModel):
    transaction: Transaction
    selected_category: str
    rejected_suggestions: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)

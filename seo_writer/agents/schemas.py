from typing import Dict, Any, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field

SectionType = Literal["intro", "tldr", "section", "faq", "table", "conclusion"]
Placement = Literal["start", "middle", "end"]
Severity = Literal["critical", "high", "medium", "low"]
QualityCategory = Literal["seo", "writing", "structure", "requirements"]
NarrativePhase = Literal["introduction", "development", "climax", "conclusion"]

QUALITY_CATEGORIES: List[str] = ["seo", "writing", "structure", "requirements"]


# Inputs

class Source(BaseModel):
    url: str
    title: Optional[str] = None


class ResearchData(BaseModel):
    text: str
    sources: List[Source] = Field(default_factory=list)


class GenerationConstraints(BaseModel):
    max_words: int = 1800
    tone_of_voice: str = "professional and informative"
    language_code: str = "en"
    notes: Optional[str] = None
    excluded_domains: List[str] = Field(default_factory=list)


class ArticleContext(BaseModel):
    title: str
    keywords: List[str] = Field(default_factory=list)
    tone_of_voice: str = "professional and informative"
    language_code: str = "en"
    content_strategy: str = ""
    sources: List[Source] = Field(default_factory=list)


# Outline

class WordTarget(BaseModel):
    min: int = Field(ge=0)
    max: int = Field(ge=0)
    target: int = Field(ge=0)


class ContentRule(BaseModel):
    priority: Severity = "medium"
    description: str


class RecommendedLink(BaseModel):
    url: str
    title: Optional[str] = None
    section_heading: Optional[str] = None


class ScreenshotCandidate(BaseModel):
    url: str
    title: Optional[str] = None
    section_heading: Optional[str] = None
    placement: Placement = "middle"
    reason: Optional[str] = None


class SectionSpec(BaseModel):
    id: str
    type: SectionType = "section"
    label: str
    required: bool = True
    word_target: WordTarget
    content_rules: List[ContentRule] = Field(default_factory=list)
    talking_points: List[str] = Field(default_factory=list)
    keyword_targets: List[str] = Field(default_factory=list)
    research_citations: List[str] = Field(default_factory=list)
    assigned_screenshots: List[ScreenshotCandidate] = Field(default_factory=list)


class Outline(BaseModel):
    title: str
    summary: str = ""
    content_strategy: str = ""
    keywords: List[str] = Field(default_factory=list)
    total_word_target: int
    sections: List[SectionSpec]
    sources: List[Source] = Field(default_factory=list)
    recommended_links: List[RecommendedLink] = Field(default_factory=list)
    priority_screenshots: List[ScreenshotCandidate] = Field(default_factory=list)

    def section(self, section_id: str) -> Optional[SectionSpec]:
        for spec in self.sections:
            if spec.id == section_id:
                return spec
        return None

    def declares(self, section_type: str) -> bool:
        return any(spec.type == section_type for spec in self.sections)


class SectionDraft(BaseModel):
    """One section as returned by the outline model."""

    type: SectionType = "section"
    label: str = Field(min_length=1)
    required: bool = True
    word_target: WordTarget
    content_rules: List[ContentRule] = Field(default_factory=list)
    talking_points: List[str] = Field(default_factory=list)
    keyword_targets: List[str] = Field(default_factory=list)
    research_citations: List[str] = Field(default_factory=list)


class OutlineDraft(BaseModel):
    """Structured response expected from the outline model."""

    summary: str = Field(min_length=10)
    content_strategy: str = ""
    sections: List[SectionDraft] = Field(min_length=1)
    recommended_links: List[RecommendedLink] = Field(default_factory=list)
    screenshot_plan: List[ScreenshotCandidate] = Field(default_factory=list)


# Narrative

class PendingTransitions(BaseModel):
    from_previous_section: str
    to_next_section: Optional[str] = None


class ContentCoverage(BaseModel):
    topics_covered: List[str] = Field(default_factory=list)
    statistics_used: List[str] = Field(default_factory=list)


class NarrativeContext(BaseModel):
    current_position: int
    total_sections: int
    phase: NarrativePhase
    introduced_concepts: List[str] = Field(default_factory=list)
    key_themes: List[str] = Field(default_factory=list)
    narrative_thread: str = ""
    pending_transitions: PendingTransitions
    content_coverage: ContentCoverage = Field(default_factory=ContentCoverage)


# Sections and critique

class SectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    section_id: str
    heading: str
    content: str
    word_count: int
    quality_score: float = Field(default=0.0, ge=0, le=10)
    citations_used: List[str] = Field(default_factory=list)
    keywords_used: List[str] = Field(default_factory=list)
    was_rewritten: bool = False
    rewrite_attempts: int = 0
    compliance_issues: List[str] = Field(default_factory=list)


class RubricScore(BaseModel):
    score: float = Field(ge=0, le=10)
    criteria: Dict[str, float] = Field(default_factory=dict)
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class CritiqueResult(BaseModel):
    approved: bool
    overall_score: float = Field(ge=0, le=10)
    content_completeness: RubricScore
    structural_compliance: RubricScore
    quality_standards: RubricScore
    critical_issues: List[str] = Field(default_factory=list)
    actionable_steps: List[str] = Field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.approved and not self.critical_issues

    def all_issues(self) -> List[str]:
        return (
            self.critical_issues
            + self.content_completeness.issues
            + self.structural_compliance.issues
            + self.quality_standards.issues
        )


class ContentCompletenessDraft(BaseModel):
    key_points_covered: float = Field(ge=0, le=10)
    statistics_cited: float = Field(ge=0, le=10)
    depth_appropriate: float = Field(ge=0, le=10)
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class StructuralComplianceDraft(BaseModel):
    word_count_met: float = Field(ge=0, le=10)
    heading_formatted: float = Field(ge=0, le=10)
    logical_flow: float = Field(ge=0, le=10)
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class QualityStandardsDraft(BaseModel):
    tone_consistent: float = Field(ge=0, le=10)
    examples_concrete: float = Field(ge=0, le=10)
    language_clear: float = Field(ge=0, le=10)
    engagement_level: float = Field(ge=0, le=10)
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class CritiqueDraft(BaseModel):
    """Structured response expected from the critic model."""

    approved: bool
    content_completeness: ContentCompletenessDraft
    structural_compliance: StructuralComplianceDraft
    quality_standards: QualityStandardsDraft
    critical_issues: List[str] = Field(default_factory=list)
    actionable_steps: List[str] = Field(default_factory=list)


# Quality control

class QualityControlIssue(BaseModel):
    category: QualityCategory
    severity: Severity
    description: str
    required_fix: str
    section_id: Optional[str] = None
    check: Optional[str] = None


class CategoryResult(BaseModel):
    category: QualityCategory
    passed: bool
    issue_count: int = 0


class TemplateCompliance(BaseModel):
    score: float = Field(ge=0, le=1)
    total_checks: int
    violations: int


class QualityControlReport(BaseModel):
    issues: List[QualityControlIssue] = Field(default_factory=list)
    categories: List[CategoryResult] = Field(default_factory=list)
    template_compliance: TemplateCompliance
    is_valid: bool
    run_count: int = 1
    run_label: Literal["initial", "post-update"] = "initial"

    def has_critical(self) -> bool:
        return any(issue.severity == "critical" for issue in self.issues)

    def fixes_by_section(self) -> Dict[str, List[str]]:
        fixes: Dict[str, List[str]] = {}
        for issue in self.issues:
            if issue.section_id:
                fixes.setdefault(issue.section_id, []).append(issue.required_fix)
        return fixes


class HolisticIssue(BaseModel):
    category: QualityCategory
    severity: Severity
    description: str
    required_fix: str
    section_heading: Optional[str] = None


class HolisticReviewDraft(BaseModel):
    """Structured response expected from the holistic quality model."""

    issues: List[HolisticIssue] = Field(default_factory=list)


class ValidationDraft(BaseModel):
    is_valid: bool
    issues: List[str] = Field(default_factory=list)


class ResearchDraft(BaseModel):
    summary: str = Field(min_length=20)
    key_findings: List[str] = Field(default_factory=list)
    statistics: List[str] = Field(default_factory=list)
    sources: List[Source] = Field(default_factory=list)


# Assets

class ImageCandidate(BaseModel):
    id: str
    provider: str
    url: str
    preview_url: Optional[str] = None
    alt: str = ""
    width: int = 0
    height: int = 0
    author_name: str = ""
    author_url: Optional[str] = None


# Cache metrics

class CacheMetrics(BaseModel):
    calls: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_created_tokens: int = 0
    cache_read_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def tokens_saved(self) -> int:
        return self.cache_read_tokens

    @property
    def efficiency_ratio(self) -> float:
        if self.input_tokens <= 0:
            return 0.0
        return round(self.cache_read_tokens / self.input_tokens * 100, 1)


class LLMResponse(BaseModel):
    text: str
    model: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

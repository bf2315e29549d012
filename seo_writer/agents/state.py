from typing import TypedDict, Dict, Any, List, Optional

from seo_writer.agents.schemas import (
    ArticleContext, CritiqueResult, NarrativeContext, Outline, SectionResult, SectionSpec,
)


class SectionLoopState(TypedDict):
    # Inputs
    spec: SectionSpec
    article: ArticleContext
    outline: Optional[Outline]
    narrative: NarrativeContext
    recent_context: str
    max_rewrites: int
    required_fixes: List[str]

    # Current draft
    content: str
    word_count: int
    attempt: int
    corrective_steps: List[str]

    # Critique
    critique: Optional[CritiqueResult]
    best: Optional[Dict[str, Any]]

    # Output
    result: Optional[SectionResult]

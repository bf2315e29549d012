from typing import Dict, Any, Optional

from seo_writer.config import settings
from seo_writer.agents.cache_optimizer import CacheOptimizer
from seo_writer.agents.generator import LLMProvider
from seo_writer.agents.schemas import (
    ArticleContext, CritiqueDraft, CritiqueResult, RubricScore, SectionSpec,
)
from seo_writer.utils.prompts import PromptConfig, DEFAULT_PROMPTS
from seo_writer.utils.logger import logger

WORD_COUNT_TOLERANCE = 0.1


def word_count_met(word_count: int, spec: SectionSpec) -> bool:
    target = spec.word_target.target
    if target <= 0:
        return True
    return abs(word_count - target) <= target * WORD_COUNT_TOLERANCE


def _rubric_score(draft: Any, criteria_names) -> RubricScore:
    criteria = {name: float(getattr(draft, name)) for name in criteria_names}
    score = sum(criteria.values()) / len(criteria) if criteria else 0.0
    return RubricScore(
        score=round(score, 2),
        criteria=criteria,
        issues=list(draft.issues),
        suggestions=list(draft.suggestions),
    )


class SectionCritic:
    """Scores a drafted section against the weighted quality rubric."""

    def __init__(self, provider: LLMProvider, prompts: Optional[PromptConfig] = None,
                 model: Optional[str] = None, timeout: Optional[float] = None,
                 approval_threshold: Optional[float] = None):
        self.provider = provider
        self.prompts = prompts or DEFAULT_PROMPTS
        self.optimizer = CacheOptimizer(self.prompts)
        self.model = model or settings.CRITIC_MODEL
        self.timeout = timeout if timeout is not None else settings.CRITIQUE_TIMEOUT
        self.approval_threshold = (
            approval_threshold if approval_threshold is not None else settings.SECTION_APPROVAL_THRESHOLD
        )

    async def critique(self, spec: SectionSpec, article: ArticleContext,
                       content: str, word_count: int) -> CritiqueResult:
        prompt = self.prompts.critique_prompt(
            spec.model_dump(), article.model_dump(), spec.label, content, word_count
        )
        messages = [self.optimizer.rubric_message(), {"role": "user", "content": prompt}]
        draft, _ = await self.provider.generate_object(
            messages, CritiqueDraft, self.model,
            temperature=settings.VALIDATOR_TEMPERATURE,
            timeout=self.timeout,
            purpose=f"critique_{spec.id}",
        )
        return self.score(draft, spec, word_count)

    def score(self, draft: CritiqueDraft, spec: SectionSpec, word_count: int) -> CritiqueResult:
        """Combine the model's criteria into weighted sub-scores.

        The word-count criterion is measured locally instead of trusted from
        the model.
        """
        rubric = self.prompts.rubric
        structural = draft.structural_compliance.model_copy()
        structural_issues = list(structural.issues)
        if word_count_met(word_count, spec):
            structural.word_count_met = 10.0
        else:
            structural.word_count_met = 0.0
            structural_issues.append(
                f"Word count {word_count} is outside 10% of the {spec.word_target.target} word target"
            )
        structural.issues = structural_issues

        completeness = _rubric_score(draft.content_completeness, rubric.content_completeness.criteria)
        structure = _rubric_score(structural, rubric.structural_compliance.criteria)
        quality = _rubric_score(draft.quality_standards, rubric.quality_standards.criteria)

        overall = (
            completeness.score * rubric.content_completeness.weight
            + structure.score * rubric.structural_compliance.weight
            + quality.score * rubric.quality_standards.weight
        )
        overall = round(min(max(overall, 0.0), 10.0), 2)

        steps = list(draft.actionable_steps)
        if not word_count_met(word_count, spec):
            direction = "Expand" if word_count < spec.word_target.target else "Trim"
            steps.append(f"{direction} the section to about {spec.word_target.target} words")

        result = CritiqueResult(
            approved=draft.approved and overall >= self.approval_threshold,
            overall_score=overall,
            content_completeness=completeness,
            structural_compliance=structure,
            quality_standards=quality,
            critical_issues=list(draft.critical_issues),
            actionable_steps=steps,
        )
        logger.debug(f"Critique {spec.id}: {self.summarize(result)}")
        return result

    @staticmethod
    def summarize(result: CritiqueResult) -> Dict[str, Any]:
        return {
            "overall": result.overall_score,
            "content_completeness": result.content_completeness.score,
            "structural_compliance": result.structural_compliance.score,
            "quality_standards": result.quality_standards.score,
            "critical_issues": len(result.critical_issues),
            "approved": result.approved,
        }

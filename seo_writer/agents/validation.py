from typing import List, Optional

from seo_writer.config import settings
from seo_writer.agents.artifacts import ValidationArtifact, WriteArtifact
from seo_writer.agents.generator import LLMProvider
from seo_writer.agents.quality_control import SLUG_RE
from seo_writer.agents.schemas import ResearchData, ValidationDraft
from seo_writer.utils.prompts import PromptConfig, DEFAULT_PROMPTS
from seo_writer.utils.logger import logger


def publish_checks(article: WriteArtifact) -> List[str]:
    issues = []
    if not article.content.strip():
        issues.append("Article content is empty")
    if not SLUG_RE.match(article.slug or ""):
        issues.append("Slug is missing or not URL-safe")
    if not article.meta_description:
        issues.append("Meta description is missing")
    elif len(article.meta_description) > settings.META_DESCRIPTION_MAX:
        issues.append(f"Meta description exceeds {settings.META_DESCRIPTION_MAX} characters")
    return issues


class ArticleValidator:
    """Cross-checks the finished article against its research."""

    def __init__(self, provider: LLMProvider, prompts: Optional[PromptConfig] = None,
                 model: Optional[str] = None, timeout: Optional[float] = None):
        self.provider = provider
        self.prompts = prompts or DEFAULT_PROMPTS
        self.model = model or settings.VALIDATION_MODEL
        self.timeout = timeout if timeout is not None else settings.VALIDATION_TIMEOUT

    async def validate(self, article: WriteArtifact, research: ResearchData) -> ValidationArtifact:
        publish_issues = publish_checks(article)

        messages = [
            {"role": "system", "content": self.prompts.VALIDATION_SYSTEM},
            {"role": "user", "content": self.prompts.validation_prompt(
                article.content, research.text, [s.model_dump() for s in research.sources]
            )},
        ]
        draft, _ = await self.provider.generate_object(
            messages, ValidationDraft, self.model,
            temperature=settings.VALIDATOR_TEMPERATURE,
            timeout=self.timeout,
            purpose="validation",
        )
        issues = publish_issues + draft.issues

        is_valid = draft.is_valid and not publish_issues
        logger.info(f"Validation complete: valid={is_valid}, {len(issues)} issues")
        return ValidationArtifact(is_valid=is_valid, issues=issues)

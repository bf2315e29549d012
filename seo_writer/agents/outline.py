from typing import Dict, List, Optional

from seo_writer.config import settings
from seo_writer.agents.cache_optimizer import CacheOptimizer
from seo_writer.agents.errors import MissingResearchData, MissingStructureTemplate, SchemaValidationFailure
from seo_writer.agents.generator import LLMProvider
from seo_writer.agents.schemas import (
    GenerationConstraints, Outline, OutlineDraft, RecommendedLink, ResearchData,
    SectionSpec, Source, WordTarget,
)
from seo_writer.agents.screenshots import select_screenshots
from seo_writer.utils.prompts import PromptConfig, DEFAULT_PROMPTS
from seo_writer.utils.text import template_skeleton
from seo_writer.utils.logger import logger

MAX_RECOMMENDED_LINKS = 6
WORD_BUDGET_TOLERANCE = 0.1


def dedupe_sources(sources: List[Source]) -> List[Source]:
    seen: Dict[str, Source] = {}
    for source in sources:
        key = source.url.strip().rstrip("/")
        if not key:
            continue
        if key not in seen or (not seen[key].title and source.title):
            seen[key] = Source(url=source.url.strip(), title=source.title)
    return list(seen.values())


def rebalance_word_targets(targets: List[WordTarget], total: int) -> List[WordTarget]:
    """Scale section targets so they sum to within 10% of ``total``.

    Targets already inside the tolerance are left untouched. Otherwise every
    section is scaled by the same factor and the rounding remainder goes to the
    largest section.
    """
    current = sum(t.target for t in targets)
    if targets and current and abs(current - total) <= total * WORD_BUDGET_TOLERANCE:
        return list(targets)
    if not targets:
        return []

    if current <= 0:
        share = total // len(targets)
        scaled = [share] * len(targets)
        factors = [None] * len(targets)
    else:
        factor = total / current
        scaled = [max(1, round(t.target * factor)) for t in targets]
        factors = [factor] * len(targets)

    drift = total - sum(scaled)
    largest = max(range(len(scaled)), key=lambda i: scaled[i])
    scaled[largest] = max(1, scaled[largest] + drift)

    balanced = []
    for original, target, factor in zip(targets, scaled, factors):
        if factor is None:
            low, high = round(target * 0.8), round(target * 1.2)
        else:
            low, high = round(original.min * factor), round(original.max * factor)
        balanced.append(WordTarget(min=min(low, target), max=max(high, target), target=target))
    return balanced


class OutlineGenerator:
    """Turns research and a structure template into a section-by-section outline."""

    def __init__(self, provider: LLMProvider, prompts: Optional[PromptConfig] = None,
                 model: Optional[str] = None, timeout: Optional[float] = None,
                 schema_retries: Optional[int] = None, max_screenshots: Optional[int] = None):
        self.provider = provider
        self.prompts = prompts or DEFAULT_PROMPTS
        self.optimizer = CacheOptimizer(self.prompts)
        self.model = model or settings.OUTLINE_MODEL
        self.timeout = timeout if timeout is not None else settings.OUTLINE_TIMEOUT
        self.schema_retries = schema_retries if schema_retries is not None else settings.OUTLINE_SCHEMA_RETRIES
        self.max_screenshots = max_screenshots if max_screenshots is not None else settings.MAX_SCREENSHOTS

    async def generate(self, title: str, keywords: List[str], research: Optional[ResearchData],
                       structure_template: Optional[str],
                       constraints: Optional[GenerationConstraints] = None) -> Outline:
        if not structure_template or not structure_template.strip():
            raise MissingStructureTemplate("A structure template is required to build an outline")
        skeleton = template_skeleton(structure_template)
        if not skeleton:
            raise MissingStructureTemplate("The structure template declares no sections")
        if research is None or not research.text.strip():
            raise MissingResearchData("Outline generation needs research data")

        constraints = constraints or GenerationConstraints()
        sources = dedupe_sources(research.sources)
        prompt = self.prompts.outline_prompt(
            title=title,
            keywords=keywords,
            research_text=research.text,
            structure_template=structure_template,
            sources=[s.model_dump() for s in sources],
            max_words=constraints.max_words,
            tone=constraints.tone_of_voice,
            language=constraints.language_code,
            notes=constraints.notes,
            section_count=len(skeleton),
        )
        messages = [self.optimizer.outline_message(), {"role": "user", "content": prompt}]

        draft = await self._request_draft(messages, len(skeleton))
        outline = self._build_outline(title, keywords, draft, sources, constraints)

        logger.info(
            f"Outline generated for '{title}': {len(outline.sections)} sections, "
            f"{sum(s.word_target.target for s in outline.sections)}/{outline.total_word_target} words, "
            f"{len(outline.priority_screenshots)} screenshots"
        )
        return outline

    async def _request_draft(self, messages, expected_sections: int) -> OutlineDraft:
        last_error: Optional[SchemaValidationFailure] = None
        for attempt in range(self.schema_retries + 1):
            try:
                draft, _ = await self.provider.generate_object(
                    messages, OutlineDraft, self.model,
                    temperature=settings.OUTLINE_TEMPERATURE,
                    timeout=self.timeout,
                    purpose="outline",
                )
                if len(draft.sections) != expected_sections:
                    raise SchemaValidationFailure(
                        f"outline: expected {expected_sections} sections from the template, "
                        f"got {len(draft.sections)}"
                    )
                return draft
            except SchemaValidationFailure as e:
                last_error = e
                logger.warning(f"Outline rejected (attempt {attempt + 1}/{self.schema_retries + 1}): {str(e)}")
        raise last_error

    def _build_outline(self, title: str, keywords: List[str], draft: OutlineDraft,
                       sources: List[Source], constraints: GenerationConstraints) -> Outline:
        total = constraints.max_words
        targets = rebalance_word_targets([s.word_target for s in draft.sections], total)

        screenshots, rejected = select_screenshots(
            draft.screenshot_plan, constraints.excluded_domains, self.max_screenshots
        )
        if rejected:
            logger.info(f"Dropped {len(rejected)} unsuitable screenshot candidates")

        sections = []
        for index, (section, target) in enumerate(zip(draft.sections, targets)):
            assigned = [s for s in screenshots if _same_heading(s.section_heading, section.label)]
            sections.append(SectionSpec(
                id=f"section-{index + 1}",
                type=section.type,
                label=section.label.strip(),
                required=section.required,
                word_target=target,
                content_rules=section.content_rules,
                talking_points=section.talking_points,
                keyword_targets=section.keyword_targets or list(keywords[:2]),
                research_citations=section.research_citations,
                assigned_screenshots=assigned,
            ))

        return Outline(
            title=title,
            summary=draft.summary,
            content_strategy=draft.content_strategy,
            keywords=list(keywords),
            total_word_target=total,
            sections=sections,
            sources=sources,
            recommended_links=self._curate_links(draft.recommended_links, sources),
            priority_screenshots=screenshots,
        )

    @staticmethod
    def _curate_links(links: List[RecommendedLink], sources: List[Source]) -> List[RecommendedLink]:
        known = {s.url.rstrip("/") for s in sources}
        curated: List[RecommendedLink] = []
        seen = set()
        for link in links:
            key = link.url.rstrip("/")
            if key in seen or (known and key not in known):
                continue
            seen.add(key)
            curated.append(link)
        return curated[:MAX_RECOMMENDED_LINKS]


def _same_heading(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()

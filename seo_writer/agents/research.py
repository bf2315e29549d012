from typing import List, Optional

from seo_writer.config import settings
from seo_writer.agents.generator import LLMProvider
from seo_writer.agents.schemas import ResearchData, ResearchDraft
from seo_writer.utils.prompts import PromptConfig, DEFAULT_PROMPTS
from seo_writer.utils.logger import logger


class ResearchProvider:
    """Produces background research for an article: text plus cited sources."""

    async def research(self, title: str, keywords: List[str],
                       notes: Optional[str] = None) -> ResearchData:
        raise NotImplementedError


class ModelResearchProvider(ResearchProvider):

    def __init__(self, provider: LLMProvider, prompts: Optional[PromptConfig] = None,
                 model: Optional[str] = None, timeout: Optional[float] = None):
        self.provider = provider
        self.prompts = prompts or DEFAULT_PROMPTS
        self.model = model or settings.RESEARCH_MODEL
        self.timeout = timeout if timeout is not None else settings.RESEARCH_TIMEOUT

    async def research(self, title: str, keywords: List[str],
                       notes: Optional[str] = None) -> ResearchData:
        messages = [
            {"role": "system", "content": self.prompts.RESEARCH_SYSTEM},
            {"role": "user", "content": self.prompts.research_prompt(title, keywords, notes)},
        ]
        draft, _ = await self.provider.generate_object(
            messages, ResearchDraft, self.model,
            timeout=self.timeout,
            purpose="research",
        )

        sections = [draft.summary]
        if draft.key_findings:
            sections.append("Key findings:\n" + "\n".join(f"- {f}" for f in draft.key_findings))
        if draft.statistics:
            sections.append("Statistics:\n" + "\n".join(f"- {s}" for s in draft.statistics))

        logger.info(f"Research complete for '{title}': {len(draft.sources)} sources")
        return ResearchData(text="\n\n".join(sections), sources=draft.sources)

from typing import Dict, Any, List, Literal, Optional
from langgraph.graph import StateGraph, END

from seo_writer.config import settings
from seo_writer.agents import narrative as narrative_tracker
from seo_writer.agents.cache_optimizer import CacheOptimizer
from seo_writer.agents.critic import SectionCritic
from seo_writer.agents.generator import LLMProvider
from seo_writer.agents.schemas import (
    ArticleContext, NarrativeContext, Outline, SectionResult, SectionSpec,
)
from seo_writer.agents.state import SectionLoopState
from seo_writer.utils.prompts import PromptConfig, DEFAULT_PROMPTS
from seo_writer.utils.text import (
    count_words, demote_headings, extract_links, keywords_present, strip_leading_heading,
)
from seo_writer.utils.logger import logger


class SectionWriter:
    """Draft -> critique -> accept | rewrite, one section at a time."""

    def __init__(self, provider: LLMProvider, prompts: Optional[PromptConfig] = None,
                 critic: Optional[SectionCritic] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, max_rewrites: Optional[int] = None):
        self.provider = provider
        self.prompts = prompts or DEFAULT_PROMPTS
        self.optimizer = CacheOptimizer(self.prompts)
        self.critic = critic or SectionCritic(provider, self.prompts)
        self.model = model or settings.WRITER_MODEL
        self.timeout = timeout if timeout is not None else settings.SECTION_DRAFT_TIMEOUT
        self.max_rewrites = max_rewrites if max_rewrites is not None else settings.MAX_REWRITES
        self.workflow = self._build_workflow()

    async def draft_node(self, state: SectionLoopState) -> SectionLoopState:
        """Write (or rewrite) the section body"""
        spec = state["spec"]
        article = state["article"]
        narrative_block = narrative_tracker.render(state["narrative"])
        if state["recent_context"]:
            narrative_block += "\n\n" + state["recent_context"]

        prompt = self.prompts.section_prompt(
            spec.model_dump(), article.model_dump(), narrative_block, state["corrective_steps"]
        )
        messages = [self.optimizer.writer_message()]
        if state["outline"] is not None:
            messages.append(self.optimizer.section_context_message(article, state["outline"]))
        messages.append({"role": "user", "content": prompt})

        response = await self.provider.generate_text(
            messages, self.model,
            temperature=settings.GENERATOR_TEMPERATURE,
            timeout=self.timeout,
            purpose=f"section_{spec.id}",
        )
        state["content"] = demote_headings(strip_leading_heading(response.text))
        state["word_count"] = count_words(state["content"])
        state["attempt"] += 1
        return state

    async def critique_node(self, state: SectionLoopState) -> SectionLoopState:
        """Score the current draft and remember the best one seen"""
        critique = await self.critic.critique(
            state["spec"], state["article"], state["content"], state["word_count"]
        )
        state["critique"] = critique
        logger.log_section(state["spec"].id, state["attempt"], critique.overall_score, critique.accepted)

        best = state["best"]
        if best is None or critique.overall_score > best["critique"].overall_score:
            state["best"] = {
                "content": state["content"],
                "word_count": state["word_count"],
                "critique": critique,
            }
        return state

    async def rewrite_node(self, state: SectionLoopState) -> SectionLoopState:
        """Carry the critique's instructions into the next draft.

        Fixes requested by quality control stay attached to every draft.
        """
        critique = state["critique"]
        steps = state["required_fixes"] + critique.critical_issues + critique.actionable_steps
        state["corrective_steps"] = list(dict.fromkeys(steps))
        return state

    async def accept_node(self, state: SectionLoopState) -> SectionLoopState:
        spec = state["spec"]
        article = state["article"]
        critique = state["critique"]
        if critique.accepted:
            chosen = {"content": state["content"], "word_count": state["word_count"], "critique": critique}
        else:
            chosen = state["best"]
            logger.warning(
                f"Section {spec.id} not approved after {state['attempt']} attempts, "
                f"keeping best draft (score {chosen['critique'].overall_score:.2f})"
            )

        content = chosen["content"]
        source_urls = {s.url.rstrip("/") for s in article.sources}
        linked = [url for _, url in extract_links(content)]
        citations = [url for url in linked if not source_urls or url.rstrip("/") in source_urls]

        state["result"] = SectionResult(
            section_id=spec.id,
            heading=spec.label,
            content=content,
            word_count=chosen["word_count"],
            quality_score=chosen["critique"].overall_score,
            citations_used=list(dict.fromkeys(citations)),
            keywords_used=keywords_present(content, list(dict.fromkeys(spec.keyword_targets + article.keywords))),
            was_rewritten=state["attempt"] > 1,
            rewrite_attempts=state["attempt"] - 1,
            compliance_issues=[] if chosen["critique"].accepted else chosen["critique"].all_issues(),
        )
        return state

    def should_rewrite(self, state: SectionLoopState) -> Literal["rewrite", "accept"]:
        if state["critique"].accepted:
            return "accept"
        if state["attempt"] > state["max_rewrites"]:
            return "accept"
        return "rewrite"

    def _build_workflow(self):
        workflow = StateGraph(SectionLoopState)

        workflow.add_node("draft", self.draft_node)
        workflow.add_node("critique", self.critique_node)
        workflow.add_node("rewrite", self.rewrite_node)
        workflow.add_node("accept", self.accept_node)

        workflow.set_entry_point("draft")
        workflow.add_edge("draft", "critique")
        workflow.add_conditional_edges(
            "critique",
            self.should_rewrite,
            {
                "rewrite": "rewrite",
                "accept": "accept"
            }
        )
        workflow.add_edge("rewrite", "draft")
        workflow.add_edge("accept", END)

        return workflow.compile()

    async def write_section(self, section: SectionSpec, context: NarrativeContext,
                            article_context: ArticleContext, outline: Optional[Outline] = None,
                            prior_sections: Optional[List[SectionResult]] = None,
                            required_fixes: Optional[List[str]] = None) -> SectionResult:
        """Write one section. Model-call errors propagate; an unapproved section does not."""
        initial: SectionLoopState = {
            "spec": section,
            "article": article_context,
            "outline": outline,
            "narrative": context,
            "recent_context": CacheOptimizer.recent_context(prior_sections or []),
            "max_rewrites": self.max_rewrites,
            "content": "",
            "word_count": 0,
            "attempt": 0,
            "required_fixes": list(required_fixes or []),
            "corrective_steps": list(required_fixes or []),
            "critique": None,
            "best": None,
            "result": None,
        }
        # Each attempt runs draft, critique and rewrite; accept adds one more step
        config: Dict[str, Any] = {"recursion_limit": 3 * (self.max_rewrites + 1) + 2}
        final = await self.workflow.ainvoke(initial, config)
        return final["result"]

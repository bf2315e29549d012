import math
from typing import Dict, Any, List, Optional

from seo_writer.agents.schemas import ArticleContext, CacheMetrics, Outline, SectionResult
from seo_writer.utils.prompts import PromptConfig, DEFAULT_PROMPTS
from seo_writer.utils.text import extract_key_points

CACHE_TAG = "cache_control"


def strip_cache_tags(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Copy of ``messages`` without cache hints, for providers that reject them."""
    return [{k: v for k, v in message.items() if k != CACHE_TAG} for message in messages]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / 3.5)


class CacheOptimizer:
    """Builds cache-tagged prompt fragments and tracks cache savings.

    Nothing here performs I/O or keeps state between calls; metrics are
    returned as new values.
    """

    def __init__(self, prompts: Optional[PromptConfig] = None):
        self.prompts = prompts or DEFAULT_PROMPTS

    @staticmethod
    def cached_message(content: str, ttl: str, role: str = "system") -> Dict[str, Any]:
        return {"role": role, "content": content, CACHE_TAG: {"type": "ephemeral", "ttl": ttl}}

    def rubric_message(self) -> Dict[str, Any]:
        return self.cached_message(self.prompts.critic_system(), self.prompts.rubric_cache_ttl)

    def outline_message(self) -> Dict[str, Any]:
        return self.cached_message(self.prompts.OUTLINE_SYSTEM, self.prompts.outline_cache_ttl)

    def writer_message(self) -> Dict[str, Any]:
        return self.cached_message(self.prompts.SECTION_WRITER_SYSTEM, self.prompts.outline_cache_ttl)

    def section_context_message(self, article: ArticleContext, outline: Outline) -> Dict[str, Any]:
        """Article-level context shared by every section of one run."""
        section_lines = "\n".join(
            f"{i + 1}. {spec.label} ({spec.type}, ~{spec.word_target.target} words)"
            for i, spec in enumerate(outline.sections)
        )
        content = f"""<article_overview>
<title>{article.title}</title>
<content_strategy>{article.content_strategy or outline.content_strategy}</content_strategy>
<summary>{outline.summary}</summary>
<sections>
{section_lines}
</sections>
</article_overview>"""
        return self.cached_message(content, self.prompts.section_cache_ttl)

    @staticmethod
    def recent_context(sections: List[SectionResult], limit: int = 2, points: int = 2) -> str:
        """Compressed view of the last ``limit`` sections: key points only."""
        recent = sections[-limit:] if limit > 0 else []
        if not recent:
            return ""
        blocks = []
        for section in recent:
            key_points = extract_key_points(section.content, limit=points)
            bullet_lines = "\n".join(f"- {point}" for point in key_points) or "- (no key points)"
            blocks.append(f"<section heading=\"{section.heading}\">\n{bullet_lines}\n</section>")
        return "<recent_context>\n" + "\n".join(blocks) + "\n</recent_context>"

    @staticmethod
    def record(metrics: CacheMetrics, metadata: Optional[Dict[str, Any]]) -> CacheMetrics:
        """Fold one call's provider metadata into the running totals."""
        metadata = metadata or {}
        read = 0
        created = 0
        provider = metadata.get("provider")
        if provider == "openai":
            read = int(metadata.get("cached_tokens") or 0)
        elif provider == "anthropic":
            read = int(metadata.get("cache_read_input_tokens") or 0)
            created = int(metadata.get("cache_creation_input_tokens") or 0)
        elif provider == "google":
            read = int(metadata.get("cached_content_token_count") or 0)

        return metrics.model_copy(update={
            "calls": metrics.calls + 1,
            "cache_hits": metrics.cache_hits + (1 if read > 0 else 0),
            "cache_misses": metrics.cache_misses + (0 if read > 0 else 1),
            "cache_read_tokens": metrics.cache_read_tokens + read,
            "cache_created_tokens": metrics.cache_created_tokens + created,
            "input_tokens": metrics.input_tokens + int(metadata.get("input_tokens") or 0),
            "output_tokens": metrics.output_tokens + int(metadata.get("output_tokens") or 0),
        })

    @staticmethod
    def summary(metrics: CacheMetrics) -> Dict[str, Any]:
        hit_rate = metrics.cache_hits / metrics.calls * 100 if metrics.calls else 0.0
        recommendations = []
        if metrics.calls and hit_rate < 30:
            recommendations.append("Low cache hit rate: keep cached system prompts byte-identical across calls")
        if metrics.cache_created_tokens and not metrics.cache_read_tokens:
            recommendations.append("Cache entries are written but never read: check TTLs against run duration")
        return {
            "calls": metrics.calls,
            "hit_rate": round(hit_rate, 1),
            "tokens_saved": metrics.tokens_saved,
            "efficiency_ratio": metrics.efficiency_ratio,
            "recommendations": recommendations,
        }

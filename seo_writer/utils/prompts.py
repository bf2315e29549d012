import json
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class RubricDimension(BaseModel):
    model_config = ConfigDict(frozen=True)

    weight: float
    criteria: List[str]


class QualityRubric(BaseModel):
    model_config = ConfigDict(frozen=True)

    content_completeness: RubricDimension = RubricDimension(
        weight=0.4,
        criteria=["key_points_covered", "statistics_cited", "depth_appropriate"],
    )
    structural_compliance: RubricDimension = RubricDimension(
        weight=0.3,
        criteria=["word_count_met", "heading_formatted", "logical_flow"],
    )
    quality_standards: RubricDimension = RubricDimension(
        weight=0.3,
        criteria=["tone_consistent", "examples_concrete", "language_clear", "engagement_level"],
    )

    def dimensions(self) -> Dict[str, RubricDimension]:
        return {
            "content_completeness": self.content_completeness,
            "structural_compliance": self.structural_compliance,
            "quality_standards": self.quality_standards,
        }

    def describe(self) -> str:
        lines = []
        for name, dimension in self.dimensions().items():
            lines.append(f"{name.upper()} (Weight: {dimension.weight:.0%})")
            for criterion in dimension.criteria:
                lines.append(f"- {criterion}: rate 0-10")
        return "\n".join(lines)


SECTION_STRUCTURE_REQUIREMENTS: Dict[str, str] = {
    "intro": """- Start with a compelling hook that immediately engages the reader
- Provide necessary context without being too broad
- Preview the value readers will gain from the article""",
    "tldr": """- Create 3-6 bullet points summarizing key takeaways
- Each bullet should provide a specific, actionable insight
- Lead with the most valuable insights first""",
    "faq": """- Format as Q&A pairs, each question as an H3 (###)
- Answers should be specific and actionable
- Order from most common to specialized questions""",
    "table": """- Use proper markdown table format with clear column headers
- Include a brief introduction explaining the table""",
    "conclusion": """- Summarize the key argument without repeating sections verbatim
- End with a clear next step for the reader""",
    "section": """- Start with the main point or argument
- Support with research evidence and examples
- Use H3 subheadings only if the section is long
- End with a clear conclusion or transition""",
}


class PromptConfig(BaseModel):
    """Versioned prompt templates and rubric.

    Values are immutable; ``revise`` returns a new configuration with a bumped
    version instead of mutating a shared instance.
    """

    model_config = ConfigDict(frozen=True)

    version: int = 1
    rubric: QualityRubric = Field(default_factory=QualityRubric)
    rubric_cache_ttl: str = "1h"
    outline_cache_ttl: str = "1h"
    section_cache_ttl: str = "30m"

    RESEARCH_SYSTEM: str = """You are a meticulous research analyst preparing background material for an SEO article.
Collect verifiable facts, recent statistics with their source, expert opinions and concrete examples.
Prefer primary sources. Never invent URLs.

Output format (JSON):
{
    "summary": "<research narrative, several paragraphs>",
    "key_findings": ["<finding>"],
    "statistics": ["<statistic with attribution>"],
    "sources": [{"url": "<url>", "title": "<title>"}]
}
"""

    OUTLINE_SYSTEM: str = """You are an expert content strategist specializing in detailed article outlines. Your task is to transform a section template into comprehensive, actionable section specifications.

SECTION ENHANCEMENT PROCESS:
1. Analyze research data for relevant statistics, examples, and expert insights
2. Create 3-5 specific talking points per section with supporting evidence
3. Assign research citations to the sections that will use them
4. Establish logical flow and transitions between sections
5. Set word targets per section based on content complexity

OUTPUT REQUIREMENTS:
- Follow the structure template exactly: do not add, remove, or reorder sections
- Each section must have specific, actionable talking points
- Provide clear content rules for writers
- Balance depth with readability
"""

    SECTION_WRITER_SYSTEM: str = """You are an expert content writer creating one focused section of a long-form article at a time.

Rules:
- Write only the body of the requested section in markdown. Do not repeat the section heading.
- Stay within the word target range.
- Address every talking point without repeating content from previous sections.
- Integrate research findings with clickable links in [text](url) format.
- Include target keywords naturally, never stuffed.
- Keep the requested tone of voice consistently.
- Never output meta-commentary.
"""

    QUALITY_CONTROL_SYSTEM: str = """You are a senior SEO editor performing the final quality review of an article.
Look for problems the automated checks cannot see: unsupported claims, repetition across sections, tone drift, unclear writing and unmet editorial requirements.
Only report real problems. Every issue needs a concrete required fix and, where it applies, the exact H2 heading of the section to fix.

Output format (JSON):
{
    "issues": [
        {"category": "seo|writing|structure|requirements", "severity": "critical|high|medium|low",
         "description": "<problem>", "required_fix": "<fix>", "section_heading": "<H2 heading or null>"}
    ]
}
"""

    VALIDATION_SYSTEM: str = """You are a fact-checking editor. Compare the article's factual claims with the research notes and sources.
Flag claims that contradict the research or cite statistics that the research does not contain.

Output format (JSON):
{
    "is_valid": <boolean>,
    "issues": ["<issue>"]
}
"""

    def revise(self, **changes: Any) -> "PromptConfig":
        changes.setdefault("version", self.version + 1)
        return self.model_copy(update=changes)

    def critic_system(self) -> str:
        return f"""You are an expert content quality evaluator. Use this quality rubric for all evaluations:

{self.rubric.describe()}

Word count is met when the section is within 10% of its target.
Set "approved" to true only when the section is publishable as-is.
List blocking problems (factual errors, missing required points, off-topic content) in "critical_issues".
Give concrete, actionable rewrite instructions in "actionable_steps".

Output format (JSON):
{{
    "approved": <boolean>,
    "content_completeness": {{"key_points_covered": <0-10>, "statistics_cited": <0-10>, "depth_appropriate": <0-10>, "issues": [], "suggestions": []}},
    "structural_compliance": {{"word_count_met": <0-10>, "heading_formatted": <0-10>, "logical_flow": <0-10>, "issues": [], "suggestions": []}},
    "quality_standards": {{"tone_consistent": <0-10>, "examples_concrete": <0-10>, "language_clear": <0-10>, "engagement_level": <0-10>, "issues": [], "suggestions": []}},
    "critical_issues": [],
    "actionable_steps": []
}}
"""

    @staticmethod
    def research_prompt(title: str, keywords: List[str], notes: Optional[str] = None) -> str:
        return f"""Research the following article topic.

Title: {title}
Keywords: {", ".join(keywords)}
{f"Editor notes: {notes}" if notes else ""}

Return the research in the specified JSON format."""

    @staticmethod
    def outline_prompt(title: str, keywords: List[str], research_text: str,
                       structure_template: str, sources: List[Dict[str, Any]],
                       max_words: int, tone: str, language: str,
                       notes: Optional[str] = None, section_count: Optional[int] = None) -> str:
        source_lines = "\n".join(
            f"[S{i + 1}] {s['url']}" + (f" - {s['title']}" if s.get("title") else "")
            for i, s in enumerate(sources)
        )
        count_rule = f"The template has exactly {section_count} sections; return exactly {section_count}." if section_count else ""
        return f"""<article_requirements>
Title: {title}
Target Keywords: {", ".join(keywords)}
Max Words: {max_words}
Tone: {tone}
Language: {language}
{f"User Notes: {notes}" if notes else ""}
</article_requirements>

<structure_template>
{structure_template}
</structure_template>
{count_rule}

<research_data>
{research_text}
</research_data>

<available_sources>
{source_lines}
</available_sources>

<output_format>
{{
  "summary": "2-3 sentence overview of the article",
  "content_strategy": "one sentence describing the article's throughline",
  "sections": [
    {{"type": "intro|tldr|section|faq|table|conclusion", "label": "<H2 heading>", "required": true,
      "word_target": {{"min": 0, "max": 0, "target": 0}},
      "content_rules": [{{"priority": "high", "description": "<rule>"}}],
      "talking_points": ["<point>"], "keyword_targets": ["<keyword>"], "research_citations": ["<finding>"]}}
  ],
  "recommended_links": [{{"url": "<url>", "title": "<title>", "section_heading": "<H2 heading>"}}],
  "screenshot_plan": [{{"url": "<url>", "title": "<title>", "section_heading": "<H2 heading>", "placement": "start|middle|end"}}]
}}
</output_format>

<rules>
- Word targets must sum to approximately {max_words} words.
- Choose up to 6 recommended links from <available_sources>.
- Choose up to 3 screenshot URLs. Never use social media, video platforms, major brand homepages,
  file sharing, payment pages, or URLs containing /login, /signin, /checkout, /payment, /admin or /download.
</rules>"""

    @staticmethod
    def section_prompt(spec: Dict[str, Any], article: Dict[str, Any], narrative_block: str,
                       corrective_steps: Optional[List[str]] = None) -> str:
        word_target = spec["word_target"]
        talking_points = "\n".join(f"{i + 1}. {p}" for i, p in enumerate(spec.get("talking_points", [])))
        citations = "\n".join(f"[R{i + 1}] {c}" for i, c in enumerate(spec.get("research_citations", [])))
        sources = "\n".join(
            f"[S{i + 1}] [{s.get('title') or 'Source'}]({s['url']})" for i, s in enumerate(article.get("sources", []))
        ) or "No source URLs available for linking"
        rules = "\n".join(f"- [{r['priority'].upper()}] {r['description']}" for r in spec.get("content_rules", []))
        screenshots = "\n".join(
            f"- {s['url']} ({s.get('placement', 'middle')}): reference this source naturally"
            for s in spec.get("assigned_screenshots", [])
        )
        structure = SECTION_STRUCTURE_REQUIREMENTS.get(spec.get("type", "section"),
                                                       SECTION_STRUCTURE_REQUIREMENTS["section"])
        prompt = f"""<article_context>
<title>{article["title"]}</title>
<target_keywords>{", ".join(article.get("keywords", []))}</target_keywords>
<tone_of_voice>{article.get("tone_of_voice")}</tone_of_voice>
<language>{article.get("language_code")}</language>
</article_context>

{narrative_block}

<section_specification>
<section_id>{spec["id"]}</section_id>
<section_type>{spec.get("type", "section")}</section_type>
<section_label>{spec["label"]}</section_label>
<word_target>Min: {word_target["min"]} | Max: {word_target["max"]} | Target: {word_target["target"]}</word_target>
<talking_points>
{talking_points}
</talking_points>
<research_citations>
{citations}
</research_citations>
<available_source_urls>
{sources}
</available_source_urls>
<keyword_targets>{", ".join(spec.get("keyword_targets", []))}</keyword_targets>
<content_rules>
{rules}
</content_rules>
{f"<assigned_screenshots>{chr(10)}{screenshots}{chr(10)}</assigned_screenshots>" if screenshots else ""}
</section_specification>

<structure_requirements>
{structure}
</structure_requirements>"""
        if corrective_steps:
            fixes = "\n".join(f"- {step}" for step in corrective_steps)
            prompt += f"""

<corrective_instructions>
The previous draft of this section was rejected. Fix every point below:
{fixes}
</corrective_instructions>"""
        return prompt + f"\n\nWrite the complete {spec.get('type', 'section')} section now:"

    @staticmethod
    def critique_prompt(spec: Dict[str, Any], article: Dict[str, Any], heading: str,
                        content: str, word_count: int) -> str:
        word_target = spec["word_target"]
        return f"""<evaluation_context>
<article_title>{article["title"]}</article_title>
<target_keywords>{", ".join(article.get("keywords", []))}</target_keywords>
<tone_of_voice>{article.get("tone_of_voice")}</tone_of_voice>
</evaluation_context>

<section_specification>
<section_label>{spec["label"]}</section_label>
<section_type>{spec.get("type", "section")}</section_type>
<required_talking_points>
{chr(10).join(f"- {p}" for p in spec.get("talking_points", []))}
</required_talking_points>
<target_keywords>{", ".join(spec.get("keyword_targets", []))}</target_keywords>
<word_target>Min: {word_target["min"]} | Max: {word_target["max"]} | Target: {word_target["target"]}</word_target>
</section_specification>

<section_to_evaluate>
<heading>{heading}</heading>
<word_count>{word_count}</word_count>
<content>
{content}
</content>
</section_to_evaluate>

Evaluate the section now and respond in the specified JSON format."""

    @staticmethod
    def quality_control_prompt(content: str, outline_summary: Dict[str, Any]) -> str:
        return f"""<requirements>
{json.dumps(outline_summary, indent=2)}
</requirements>

<article>
{content}
</article>

Review the article and respond in the specified JSON format."""

    @staticmethod
    def validation_prompt(content: str, research_text: str, sources: List[Dict[str, Any]]) -> str:
        source_lines = "\n".join(f"- {s['url']}" for s in sources)
        return f"""<research_notes>
{research_text}
</research_notes>

<sources>
{source_lines}
</sources>

<article>
{content}
</article>

Cross-check the article and respond in the specified JSON format."""


DEFAULT_PROMPTS = PromptConfig()

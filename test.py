import os
import json
import asyncio
import tempfile
import shutil
import unittest
import atexit
from pathlib import Path

# ---------------------------------------------------------------------------
# Baseline environment configuration (ensures settings can load)
# ---------------------------------------------------------------------------
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from seo_writer.config import settings

# Use an isolated workspace so tests never touch the developer's data.
TEST_ROOT = Path(tempfile.mkdtemp(prefix="seo_writer_tests_"))
settings.DATABASE_PATH = str(TEST_ROOT / "seo_writer_test.db")
settings.LOG_FILE = str(TEST_ROOT / "article_generation_test.log")

# Import logger and database modules AFTER settings overrides so they use test paths.
import seo_writer.database.operations as operations_module  # pylint: disable=wrong-import-position
from seo_writer.database.models import Base  # pylint: disable=wrong-import-position
from seo_writer.agents import narrative  # pylint: disable=wrong-import-position
from seo_writer.agents.artifacts import (  # pylint: disable=wrong-import-position
    GenerationArtifacts, ResearchArtifact, WriteArtifact,
)
from seo_writer.agents.assembly import assemble, build_meta_description  # pylint: disable=wrong-import-position
from seo_writer.agents.cache_optimizer import CacheOptimizer, strip_cache_tags  # pylint: disable=wrong-import-position
from seo_writer.agents.critic import SectionCritic, word_count_met  # pylint: disable=wrong-import-position
from seo_writer.agents.errors import (  # pylint: disable=wrong-import-position
    ArticleNotFound, AssetSelectionFailure, MissingResearchData, MissingStructureTemplate,
    ProviderError, ProviderTimeout, RunNotFound, SchemaValidationFailure,
)
from seo_writer.agents.generator import LLMProvider  # pylint: disable=wrong-import-position
from seo_writer.agents.images import ImageSearchProvider, choose_cover, select_cover_image  # pylint: disable=wrong-import-position
from seo_writer.agents.links import LinkChecker  # pylint: disable=wrong-import-position
from seo_writer.agents.orchestrator import GenerationOrchestrator  # pylint: disable=wrong-import-position
from seo_writer.agents.outline import OutlineGenerator, rebalance_word_targets  # pylint: disable=wrong-import-position
from seo_writer.agents.quality_control import QualityControlGate, keep_better  # pylint: disable=wrong-import-position
from seo_writer.agents.schemas import (  # pylint: disable=wrong-import-position
    ArticleContext, CacheMetrics, GenerationConstraints, ImageCandidate, LLMResponse, QualityControlReport,
    ResearchData, ScreenshotCandidate, SectionResult, Source, TemplateCompliance, WordTarget,
)
from seo_writer.agents.screenshots import select_screenshots, validate_screenshot_url  # pylint: disable=wrong-import-position
from seo_writer.agents.section_writer import SectionWriter  # pylint: disable=wrong-import-position
from seo_writer.api.websocket import ConnectionManager  # pylint: disable=wrong-import-position
from seo_writer.utils.prompts import DEFAULT_PROMPTS  # pylint: disable=wrong-import-position
from seo_writer.utils.logger import logger  # pylint: disable=wrong-import-position
from seo_writer.utils.text import (  # pylint: disable=wrong-import-position
    count_words, demote_headings, markdown_headings, parse_markdown_sections,
    strip_leading_heading, template_skeleton,
)

db_ops = operations_module.db_ops


def _cleanup() -> None:
    """Remove the temporary workspace (called on interpreter exit)."""
    try:
        db_ops.engine.dispose()
    except Exception:  # pragma: no cover - best effort cleanup
        pass
    shutil.rmtree(TEST_ROOT, ignore_errors=True)


atexit.register(_cleanup)


def reset_database() -> None:
    """Recreate every table so each test starts with a blank DB."""
    Base.metadata.drop_all(db_ops.engine)
    Base.metadata.create_all(db_ops.engine)


def run_async(coro):
    """Helper to execute async callables inside synchronous tests."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Scenario data: "5 Ways to Reduce Cloud Costs", four sections, 1000 words.
# ---------------------------------------------------------------------------
TITLE = "5 Ways to Reduce Cloud Costs"
KEYWORDS = ["cloud costs", "finops"]
TEMPLATE = "## Introduction\n## Why Cloud Bills Grow\n## Five Ways to Cut Spend\n## Conclusion"
SOURCES = [
    {"url": "https://www.finops.org/insights/state-of-finops", "title": "State of FinOps"},
    {"url": "https://cloud.example.edu/cost-study", "title": "University cost study"},
]

RESEARCH = {
    "summary": "Cloud spend keeps growing faster than usage because idle capacity and missing ownership go unnoticed.",
    "key_findings": ["Teams waste roughly a third of their cloud budget"],
    "statistics": ["32% of cloud spend is wasted (State of FinOps)"],
    "sources": SOURCES + [{"url": "https://www.finops.org/insights/state-of-finops/"}],
}


def _section(section_type, label, minimum, target, maximum):
    return {
        "type": section_type,
        "label": label,
        "word_target": {"min": minimum, "max": maximum, "target": target},
        "content_rules": [{"priority": "high", "description": "Cite the research"}],
        "talking_points": [f"Explain {label.lower()}"],
        "keyword_targets": ["cloud costs"],
    }


OUTLINE_DRAFT = {
    "summary": "A practical guide to the five habits that bring cloud bills back under control.",
    "content_strategy": "Move from diagnosis to concrete savings",
    "sections": [
        _section("intro", "Introduction", 135, 150, 165),
        _section("section", "Why Cloud Bills Grow", 270, 300, 330),
        _section("section", "Five Ways to Cut Spend", 360, 400, 440),
        _section("conclusion", "Conclusion", 135, 150, 165),
    ],
    "recommended_links": [
        {"url": s["url"], "title": s["title"]} for s in SOURCES
    ] + [{"url": "https://unknown.example.com/page", "title": "Not a research source"}],
    "screenshot_plan": [
        {"url": "https://www.youtube.com/watch?v=abc", "section_heading": "Why Cloud Bills Grow"},
        {"url": "https://blog.finops.org/rightsizing-guide", "title": "A practical rightsizing guide for teams",
         "section_heading": "Five Ways to Cut Spend"},
    ],
}

SECTION_TARGETS = {"section-1": 150, "section-2": 300, "section-3": 400, "section-4": 150}
SECTION_LINKS = {"section-1": SOURCES[0], "section-2": SOURCES[1], "section-3": SOURCES[0]}

COVER_CANDIDATES = [
    ImageCandidate(id="portrait", provider="unsplash", url="https://images.example.com/p.jpg",
                   alt="Tall data center", width=5000, height=6000, author_name="Lee"),
    ImageCandidate(id="no-alt", provider="unsplash", url="https://images.example.com/n.jpg",
                   alt="", width=6000, height=3000, author_name="Kim"),
    ImageCandidate(id="racks", provider="unsplash", url="https://images.example.com/a.jpg",
                   alt="Server racks in a data center", width=4000, height=2500, author_name="Ana"),
]


def section_body(target, link=None, opener="The"):
    if link:
        body = f"{opener} [{link['title']}]({link['url']}) shows that teams waste 32% of their cloud costs."
    else:
        body = f"{opener} habits below keep cloud costs predictable."
    filler = "Rightsizing idle instances lowers the monthly bill."
    while count_words(body) < target:
        body = f"{body} {filler}".strip()
    return body


def critique_json(score=9.0, approved=True, critical=None, steps=None):
    return json.dumps({
        "approved": approved,
        "content_completeness": {
            "key_points_covered": score, "statistics_cited": score, "depth_appropriate": score,
        },
        "structural_compliance": {
            "word_count_met": score, "heading_formatted": score, "logical_flow": score,
        },
        "quality_standards": {
            "tone_consistent": score, "examples_concrete": score,
            "language_clear": score, "engagement_level": score,
        },
        "critical_issues": critical or [],
        "actionable_steps": steps or [],
    })


def sequence(*texts):
    """Responder returning each text in turn, repeating the last one."""
    items = list(texts)

    def respond(messages):
        return items.pop(0) if len(items) > 1 else items[0]
    return respond


def user_prompt(messages):
    return messages[-1]["content"]


# ---------------------------------------------------------------------------
# Stub implementations for external dependencies (model, images, links).
# ---------------------------------------------------------------------------
class StubLLM(LLMProvider):
    """Deterministic model keyed by call purpose."""

    name = "stub"

    def __init__(self, responses=None, failures=None, delay=0):
        self.calls = []
        self.responses = dict(responses or {})
        self.failures = dict(failures or {})
        self.delay = delay

    def count(self, purpose):
        return sum(1 for p, _ in self.calls if p == purpose)

    def messages_for(self, purpose):
        return [m for p, m in self.calls if p == purpose]

    async def _complete(self, messages, model, temperature, json_mode, purpose):
        self.calls.append((purpose, messages))
        await asyncio.sleep(self.delay)
        if self.failures.get(purpose):
            self.failures[purpose] -= 1
            raise ProviderError(f"{purpose}: stub outage")

        responder = self.responses.get(purpose)
        if callable(responder):
            text = responder(messages)
        elif responder is not None:
            text = responder
        else:
            text = self._default(purpose)
        metadata = {"provider": "openai", "input_tokens": 100, "output_tokens": 50,
                    "cached_tokens": 40 if purpose.startswith("critique_") else 0}
        return LLMResponse(text=text, model=model, metadata=metadata)

    @staticmethod
    def _default(purpose):
        if purpose == "research":
            return json.dumps(RESEARCH)
        if purpose == "outline":
            return json.dumps(OUTLINE_DRAFT)
        if purpose.startswith("section_"):
            section_id = purpose[len("section_"):]
            return section_body(SECTION_TARGETS[section_id], SECTION_LINKS.get(section_id))
        if purpose.startswith("critique_"):
            return critique_json()
        if purpose == "quality_control":
            return json.dumps({"issues": []})
        if purpose == "validation":
            return json.dumps({"is_valid": True, "issues": []})
        raise AssertionError(f"Unexpected model call: {purpose}")


class StubImageProvider(ImageSearchProvider):
    name = "stub"

    def __init__(self, candidates=None, error=None):
        self.candidates = list(candidates or [])
        self.error = error
        self.queries = []

    async def search(self, query, limit=10):
        self.queries.append(query)
        await asyncio.sleep(0)
        if self.error:
            raise AssetSelectionFailure(self.error)
        return list(self.candidates)


class StubLinkChecker:
    def __init__(self, broken=None):
        self.broken = dict(broken or {})
        self.checked = []

    async def check(self, urls):
        self.checked.append(list(urls))
        await asyncio.sleep(0)
        return {url: reason for url, reason in self.broken.items() if url in urls}


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


TEST_CONFIG = settings.model_copy(update={
    "PHASE_MAX_ATTEMPTS": 2,
    "PHASE_BACKOFF_BASE": 1.0,
    "PHASE_BACKOFF_FACTOR": 4.0,
    "MAX_REWRITES": 2,
    "MAX_QC_RUNS": 2,
})


def make_orchestrator(llm=None, images=None, links=None, config=None, sleep=None, on_progress=None):
    return GenerationOrchestrator(
        db_ops,
        provider=llm or StubLLM(),
        image_provider=images or StubImageProvider(COVER_CANDIDATES),
        link_checker=links or StubLinkChecker(),
        config=config or TEST_CONFIG,
        sleep=sleep or RecordingSleep(),
        on_progress=on_progress,
    )


def create_scenario_article(**overrides):
    fields = {
        "title": TITLE,
        "keywords": KEYWORDS,
        "structure_template": TEMPLATE,
        "max_words": 1000,
        "tone_of_voice": "practical",
    }
    fields.update(overrides)
    return db_ops.create_article(**fields)


def build_outline(llm=None):
    research = ResearchData(text=RESEARCH["summary"], sources=[Source(**s) for s in SOURCES])
    generator = OutlineGenerator(llm or StubLLM())
    return run_async(generator.generate(
        TITLE, KEYWORDS, research, TEMPLATE, GenerationConstraints(max_words=1000)
    ))


def build_sections(outline):
    return [
        SectionResult(
            section_id=spec.id,
            heading=spec.label,
            content=section_body(spec.word_target.target, SECTION_LINKS.get(spec.id)),
            word_count=spec.word_target.target,
            keywords_used=["cloud costs"],
        )
        for spec in outline.sections
    ]


# ---------------------------------------------------------------------------
# Unit tests
# ---------------------------------------------------------------------------
class TextHelpersTestCase(unittest.TestCase):
    """Markdown helpers shared by the writer and the quality gate."""

    def test_parse_markdown_sections_ignores_fenced_headings(self):
        markdown = (
            "# Title\n\n"
            "## First\nAlpha text\n"
            "```\n## not a heading\n```\n"
            "## Second\nBeta text\n### Sub question\nAnswer"
        )
        sections = parse_markdown_sections(markdown)
        self.assertEqual([s["heading"] for s in sections], ["First", "Second"])
        self.assertIn("## not a heading", sections[0]["content"])
        self.assertIn("### Sub question", sections[1]["content"])

    def test_parse_markdown_sections_keeps_preamble(self):
        sections = parse_markdown_sections("# Title\nLead paragraph\n## Body\nText")
        self.assertEqual(sections[0], {"heading": "", "content": "Lead paragraph"})
        self.assertEqual(sections[1]["heading"], "Body")

    def test_strip_leading_heading_only_drops_section_headings(self):
        self.assertEqual(strip_leading_heading("## Intro\n\nBody text"), "Body text")
        self.assertEqual(strip_leading_heading("### Question one\nAnswer"), "### Question one\nAnswer")

    def test_markdown_headings_skip_fenced_code(self):
        markdown = "# Title\n```bash\n# list idle instances\n## not a section\n```\n## Body\n### Question"
        self.assertEqual(markdown_headings(markdown, 1), ["Title"])
        self.assertEqual(markdown_headings(markdown, 2), ["Body"])
        self.assertEqual(markdown_headings(markdown, 3), ["Question"])

    def test_demote_headings_leaves_code_fences_alone(self):
        body = "Lead\n## Where the money goes\n# Stray title\n```bash\n# list idle instances\n```\n### Kept"
        self.assertEqual(
            demote_headings(body),
            "Lead\n### Where the money goes\n### Stray title\n```bash\n# list idle instances\n```\n### Kept",
        )
        self.assertEqual(demote_headings("#hashtag stays"), "#hashtag stays")

    def test_template_skeleton_accepts_markdown_or_list(self):
        self.assertEqual(len(template_skeleton(TEMPLATE)), 4)
        self.assertEqual(template_skeleton("1. Intro\n- Body\n\n* Outro"), ["Intro", "Body", "Outro"])
        self.assertEqual(template_skeleton("   \n"), [])


class RunLoggingTestCase(unittest.TestCase):

    def test_run_lifecycle_levels(self):
        with self.assertLogs(logger.logger, level="INFO") as captured:
            logger.log_run("run-1", "started", "article a-1")
            logger.log_run("run-1", "failed", "writing: stub outage")
            logger.log_run("run-1", "cancelled")
        self.assertEqual([r.levelname for r in captured.records], ["INFO", "ERROR", "WARNING"])
        self.assertIn("Run run-1 - Status: failed - writing: stub outage", captured.output[1])
        self.assertTrue(captured.output[2].endswith("Run run-1 - Status: cancelled"))


class ScreenshotFilterTestCase(unittest.TestCase):
    """Denylist filtering and ranking of screenshot candidates."""

    def test_denylists_and_blocked_paths(self):
        self.assertEqual(validate_screenshot_url("https://www.youtube.com/watch?v=1").category, "video-platform")
        self.assertEqual(validate_screenshot_url("https://m.facebook.com/page").category, "social-media")
        self.assertEqual(validate_screenshot_url("https://example.com/login").category, "invalid-url")
        self.assertEqual(validate_screenshot_url("https://example.com/report.pdf").category, "invalid-url")
        self.assertEqual(validate_screenshot_url("ftp://example.com/x").category, "invalid-url")
        excluded = validate_screenshot_url("https://www.rival.com/post", ["rival.com"])
        self.assertEqual(excluded.category, "excluded-domain")
        self.assertTrue(validate_screenshot_url("https://blog.example.com/guide").is_valid)

    def test_select_screenshots_ranks_and_limits(self):
        candidates = [
            ScreenshotCandidate(url="http://plain.example.com/a"),
            ScreenshotCandidate(url="https://news.example.com/story", title="An in-depth story on cloud costs"),
            ScreenshotCandidate(url="https://vimeo.com/123"),
            ScreenshotCandidate(url="https://news.example.com/story"),
            ScreenshotCandidate(url="https://blog.example.com/post"),
        ]
        kept, rejected = select_screenshots(candidates, limit=2)
        self.assertEqual([c.url for c in kept],
                         ["https://news.example.com/story", "https://blog.example.com/post"])
        self.assertEqual(len(rejected), 1)
        self.assertEqual(rejected[0]["category"], "video-platform")


class OutlineTestCase(unittest.TestCase):
    """Outline generation against the structure template."""

    def test_rebalance_word_targets(self):
        within = [WordTarget(min=270, max=330, target=300), WordTarget(min=630, max=770, target=700)]
        self.assertEqual(rebalance_word_targets(within, 1050), within)

        scaled = rebalance_word_targets(
            [WordTarget(min=80, max=120, target=100) for _ in range(3)], 1000
        )
        self.assertEqual(sum(t.target for t in scaled), 1000)
        for target in scaled:
            self.assertLessEqual(target.min, target.target)
            self.assertGreaterEqual(target.max, target.target)

    def test_outline_follows_template_and_assigns_screenshots(self):
        outline = build_outline()
        self.assertEqual([s.id for s in outline.sections],
                         ["section-1", "section-2", "section-3", "section-4"])
        self.assertEqual(sum(s.word_target.target for s in outline.sections), 1000)
        self.assertEqual(len(outline.sources), 2)
        self.assertEqual(len(outline.recommended_links), 2)
        self.assertEqual([s.url for s in outline.priority_screenshots],
                         ["https://blog.finops.org/rightsizing-guide"])
        self.assertEqual(len(outline.section("section-3").assigned_screenshots), 1)
        self.assertEqual(outline.section("section-2").assigned_screenshots, [])

    def test_section_count_mismatch_is_retried(self):
        short = dict(OUTLINE_DRAFT, sections=OUTLINE_DRAFT["sections"][:3])
        llm = StubLLM(responses={"outline": sequence(json.dumps(short), json.dumps(OUTLINE_DRAFT))})
        outline = build_outline(llm)
        self.assertEqual(len(outline.sections), 4)
        self.assertEqual(llm.count("outline"), 2)

    def test_section_count_mismatch_exhausts_retries(self):
        short = dict(OUTLINE_DRAFT, sections=OUTLINE_DRAFT["sections"][:3])
        llm = StubLLM(responses={"outline": json.dumps(short)})
        generator = OutlineGenerator(llm, schema_retries=1)
        research = ResearchData(text="Research", sources=[])
        with self.assertRaises(SchemaValidationFailure):
            run_async(generator.generate(TITLE, KEYWORDS, research, TEMPLATE))
        self.assertEqual(llm.count("outline"), 2)

    def test_missing_inputs_fail_before_any_model_call(self):
        llm = StubLLM()
        generator = OutlineGenerator(llm)
        research = ResearchData(text="Research", sources=[])
        with self.assertRaises(MissingStructureTemplate):
            run_async(generator.generate(TITLE, KEYWORDS, research, None))
        with self.assertRaises(MissingResearchData):
            run_async(generator.generate(TITLE, KEYWORDS, None, TEMPLATE))
        self.assertEqual(llm.calls, [])


class NarrativeTestCase(unittest.TestCase):
    """Narrative context carried between sections."""

    def test_phase_thresholds(self):
        self.assertEqual(narrative.narrative_phase(1, 5), "introduction")
        self.assertEqual(narrative.narrative_phase(2, 5), "development")
        self.assertEqual(narrative.narrative_phase(4, 5), "climax")
        self.assertEqual(narrative.narrative_phase(5, 5), "conclusion")

    def test_advance_and_render(self):
        outline = build_outline()
        opening = narrative.advance([], outline)
        self.assertEqual(opening.current_position, 1)
        self.assertEqual(opening.phase, "introduction")
        self.assertIn("opening section", opening.pending_transitions.from_previous_section)
        self.assertIn("cloud costs", opening.key_themes)

        sections = build_sections(outline)[:2]
        context = narrative.advance(sections, outline)
        self.assertEqual(context.current_position, 3)
        self.assertEqual(context.phase, "climax")
        self.assertIn("32%", context.content_coverage.statistics_used)
        self.assertIn("Introduction -> Why Cloud Bills Grow", context.narrative_thread)
        self.assertIn("five ways to cut spend", context.pending_transitions.to_next_section)
        self.assertIn("Section 3 of 4 (climax phase)", narrative.render(context))

    def test_consistency_is_advisory(self):
        outline = build_outline()
        sections = build_sections(outline)
        report = narrative.check_consistency(sections, narrative.advance(sections, outline))
        self.assertFalse(report["is_consistent"])
        self.assertTrue(any("Repeated concepts" in issue for issue in report["issues"]))
        self.assertEqual(len(report["issues"]), len(report["recommendations"]))


class CacheOptimizerTestCase(unittest.TestCase):

    def test_cached_messages_and_tag_stripping(self):
        optimizer = CacheOptimizer()
        message = optimizer.rubric_message()
        self.assertEqual(message["cache_control"], {"type": "ephemeral", "ttl": "1h"})
        self.assertIn("CONTENT_COMPLETENESS (Weight: 40%)", message["content"])
        self.assertNotIn("cache_control", strip_cache_tags([message])[0])

    def test_record_and_summary(self):
        metrics = CacheMetrics()
        metrics = CacheOptimizer.record(metrics, {"provider": "openai", "input_tokens": 200, "cached_tokens": 50})
        metrics = CacheOptimizer.record(metrics, {"provider": "anthropic", "input_tokens": 100,
                                                  "cache_creation_input_tokens": 80})
        self.assertEqual(metrics.calls, 2)
        self.assertEqual(metrics.cache_hits, 1)
        self.assertEqual(metrics.cache_created_tokens, 80)
        self.assertEqual(metrics.efficiency_ratio, 16.7)
        summary = CacheOptimizer.summary(metrics)
        self.assertEqual(summary["hit_rate"], 50.0)
        self.assertEqual(summary["tokens_saved"], 50)

    def test_recent_context_keeps_last_sections(self):
        outline = build_outline()
        context = CacheOptimizer.recent_context(build_sections(outline), limit=2)
        self.assertNotIn("Introduction", context)
        self.assertIn('heading="Conclusion"', context)
        self.assertEqual(CacheOptimizer.recent_context([]), "")


class PromptConfigTestCase(unittest.TestCase):

    def test_revise_bumps_version(self):
        revised = DEFAULT_PROMPTS.revise(section_cache_ttl="5m")
        self.assertEqual(revised.version, DEFAULT_PROMPTS.version + 1)
        self.assertEqual(revised.section_cache_ttl, "5m")
        self.assertEqual(DEFAULT_PROMPTS.section_cache_ttl, "30m")


class GeneratorTestCase(unittest.TestCase):
    """Structured output parsing and call timeouts."""

    def test_invalid_json_is_a_schema_failure(self):
        llm = StubLLM(responses={"research": "not json"})
        with self.assertRaises(SchemaValidationFailure):
            run_async(llm.generate_object([], ResearchArtifact, "model", purpose="research"))

    def test_schema_mismatch_is_a_schema_failure(self):
        llm = StubLLM(responses={"research": json.dumps({"sources": []})})
        with self.assertRaises(SchemaValidationFailure):
            run_async(llm.generate_object([], ResearchArtifact, "model", purpose="research"))

    def test_slow_call_times_out(self):
        llm = StubLLM(delay=1)
        with self.assertRaises(ProviderTimeout):
            run_async(llm.generate_text([], "model", timeout=0.01, purpose="validation"))


class CriticTestCase(unittest.TestCase):

    def test_weighted_score_with_local_word_count(self):
        outline = build_outline()
        spec = outline.section("section-2")
        self.assertTrue(word_count_met(290, spec))
        self.assertFalse(word_count_met(200, spec))

        critic = SectionCritic(StubLLM(), approval_threshold=7.0)
        article = ArticleContext(title=TITLE, keywords=KEYWORDS)
        result = run_async(critic.critique(spec, article, "body", 300))
        # 9 * 0.4 + (10 + 9 + 9) / 3 * 0.3 + 9 * 0.3
        self.assertAlmostEqual(result.overall_score, 9.1, places=2)
        self.assertTrue(result.accepted)

        short = run_async(critic.critique(spec, article, "body", 100))
        self.assertEqual(short.structural_compliance.criteria["word_count_met"], 0.0)
        self.assertTrue(any(step.startswith("Expand") for step in short.actionable_steps))


class SectionWriterTestCase(unittest.TestCase):
    """Draft, critique and rewrite loop for a single section."""

    def _write(self, llm, required_fixes=None):
        outline = build_outline()
        spec = outline.section("section-2")
        article = ArticleContext(title=TITLE, keywords=KEYWORDS, sources=outline.sources)
        writer = SectionWriter(llm, max_rewrites=2)
        context = narrative.advance([], outline)
        return run_async(writer.write_section(spec, context, article, outline, [], required_fixes))

    def test_accepted_on_first_draft(self):
        llm = StubLLM()
        result = self._write(llm)
        self.assertEqual(llm.count("section_section-2"), 1)
        self.assertFalse(result.was_rewritten)
        self.assertEqual(result.citations_used, [SOURCES[1]["url"]])
        self.assertIn("cloud costs", result.keywords_used)

    def test_rewrite_bound_keeps_best_draft(self):
        llm = StubLLM(responses={
            "section_section-2": sequence(
                section_body(300, opener="First"),
                section_body(300, SOURCES[1], opener="Second"),
                section_body(300, opener="Third"),
            ),
            "critique_section-2": sequence(
                critique_json(5, approved=False, steps=["Add a concrete example"]),
                critique_json(8, approved=False, steps=["Tighten the opening"]),
                critique_json(6, approved=False),
            ),
        })
        result = self._write(llm)
        self.assertEqual(llm.count("section_section-2"), 3)
        self.assertEqual(result.rewrite_attempts, 2)
        self.assertTrue(result.was_rewritten)
        self.assertTrue(result.content.startswith("Second"))
        self.assertAlmostEqual(result.quality_score, 8.2, places=2)

        second_prompt = user_prompt(llm.messages_for("section_section-2")[1])
        self.assertIn("Add a concrete example", second_prompt)

    def test_required_fixes_stay_on_every_draft(self):
        llm = StubLLM(responses={
            "critique_section-2": sequence(
                critique_json(5, approved=False, steps=["Add a concrete example"]),
                critique_json(),
            ),
        })
        result = self._write(llm, required_fixes=["Expand the cost breakdown"])
        self.assertEqual(result.rewrite_attempts, 1)

        first_prompt, second_prompt = [user_prompt(m) for m in llm.messages_for("section_section-2")]
        self.assertIn("<corrective_instructions>", first_prompt)
        self.assertIn("Expand the cost breakdown", first_prompt)
        self.assertIn("Expand the cost breakdown", second_prompt)
        self.assertIn("Add a concrete example", second_prompt)

    def test_headings_inside_a_draft_are_demoted(self):
        half = section_body(150, SOURCES[1])
        llm = StubLLM(responses={"section_section-2": f"## Why Cloud Bills Grow\n\n{half}\n\n## Where the money goes\n\n{half}"})
        result = self._write(llm)
        self.assertFalse(result.content.startswith("#"))
        self.assertIn("\n### Where the money goes\n", result.content)
        self.assertNotIn("\n## ", result.content)


class AssemblyTestCase(unittest.TestCase):

    def test_assemble_orders_sections_and_derives_seo_fields(self):
        outline = build_outline()
        sections = build_sections(outline)
        write = assemble(outline, list(reversed(sections)), TITLE)
        self.assertTrue(write.complete)
        self.assertEqual([s.section_id for s in write.sections],
                         ["section-1", "section-2", "section-3", "section-4"])
        self.assertTrue(write.content.startswith(f"# {TITLE}\n\n## Introduction"))
        self.assertEqual(write.slug, "5-ways-to-reduce-cloud-costs")
        self.assertLessEqual(len(write.meta_description), 160)
        self.assertIn("cloud costs", write.meta_description.lower())
        self.assertTrue(write.meta_description.startswith("The State of FinOps shows"))
        self.assertEqual(write.tags, ["cloud costs", "finops"])

        partial = assemble(outline, sections[:2], TITLE)
        self.assertFalse(partial.complete)

    def test_meta_description_uses_keyword_sentence(self):
        section = SectionResult(section_id="section-1", heading="Intro",
                                content="Cloud costs fall when teams own their spend. More text here.",
                                word_count=10)
        meta = build_meta_description([section], ["cloud costs"])
        self.assertEqual(meta, "Cloud costs fall when teams own their spend. More text here.")


class QualityControlTestCase(unittest.TestCase):
    """Deterministic checks, holistic review mapping and the monotonic gate."""

    def setUp(self):
        self.outline = build_outline()
        self.write = assemble(self.outline, build_sections(self.outline), TITLE)

    def test_clean_article_passes(self):
        gate = QualityControlGate(StubLLM(), link_checker=StubLinkChecker(), threshold=0.85)
        report = run_async(gate.evaluate(self.write, self.outline))
        self.assertTrue(report.is_valid)
        self.assertEqual(report.template_compliance.violations, 0)
        self.assertEqual(report.template_compliance.score, 1.0)
        self.assertTrue(all(c.passed for c in report.categories))

    def test_extra_h1_is_critical(self):
        broken = self.write.model_copy(update={"content": self.write.content + "\n# Another title\n"})
        gate = QualityControlGate(StubLLM(), link_checker=StubLinkChecker(), threshold=0.5)
        report = run_async(gate.evaluate(broken, self.outline))
        self.assertFalse(report.is_valid)
        self.assertTrue(report.has_critical())
        self.assertIn("h1_count", [i.check for i in report.issues])

    def test_broken_link_and_holistic_issue_map_to_sections(self):
        holistic = json.dumps({"issues": [{
            "category": "writing", "severity": "medium",
            "description": "Claims lack examples", "required_fix": "Add an example",
            "section_heading": "why cloud bills grow",
        }]})
        links = StubLinkChecker(broken={SOURCES[0]["url"]: "HTTP 404"})
        gate = QualityControlGate(StubLLM(responses={"quality_control": holistic}), link_checker=links)
        report = run_async(gate.evaluate(self.write, self.outline))
        fixes = report.fixes_by_section()
        self.assertIn("section-1", fixes)
        self.assertEqual(fixes["section-2"], ["Add an example"])
        self.assertEqual(report.template_compliance.violations, 1)

    def test_headings_inside_code_fences_are_ignored(self):
        sections = build_sections(self.outline)
        sections[2] = sections[2].model_copy(update={
            "content": sections[2].content + "\n\n```bash\n# list idle instances\n## not a section\n```",
        })
        write = assemble(self.outline, sections, TITLE)
        gate = QualityControlGate(StubLLM(), link_checker=StubLinkChecker(), threshold=0.85)
        report = run_async(gate.evaluate(write, self.outline))
        self.assertTrue(report.is_valid)
        self.assertEqual(report.template_compliance.violations, 0)

    def test_stray_h2_is_attributed_to_its_section(self):
        sections = build_sections(self.outline)
        half = section_body(150, SOURCES[1])
        sections[1] = sections[1].model_copy(update={"content": f"{half}\n\n## Where the money goes\n\n{half}"})
        write = assemble(self.outline, sections, TITLE)
        gate = QualityControlGate(StubLLM(), link_checker=StubLinkChecker(), threshold=0.5)
        report = run_async(gate.evaluate(write, self.outline))

        h2_issue = next(i for i in report.issues if i.check == "h2_count")
        self.assertEqual(h2_issue.severity, "critical")
        self.assertEqual(h2_issue.section_id, "section-2")
        self.assertNotIn("section_word_floor", [i.check for i in report.issues])
        self.assertEqual(list(report.fixes_by_section()), ["section-2"])

    def test_keep_better_is_monotonic(self):
        def report(score):
            return QualityControlReport(
                template_compliance=TemplateCompliance(score=score, total_checks=10, violations=0),
                is_valid=False,
            )
        self.assertTrue(keep_better(report(0.8), report(0.9)))
        self.assertTrue(keep_better(report(0.8), report(0.8)))
        self.assertFalse(keep_better(report(0.9), report(0.8)))


class AssetsTestCase(unittest.TestCase):

    def test_choose_cover_prefers_wide_landscape_with_alt(self):
        self.assertEqual(choose_cover(COVER_CANDIDATES).id, "racks")
        with self.assertRaises(AssetSelectionFailure):
            choose_cover(COVER_CANDIDATES[:2])

    def test_select_cover_image_falls_back_to_title(self):
        class EmptyThenFull(StubImageProvider):
            async def search(self, query, limit=10):
                self.queries.append(query)
                return list(self.candidates) if len(self.queries) > 1 else []

        provider = EmptyThenFull(COVER_CANDIDATES)
        cover = run_async(select_cover_image(provider, TITLE, KEYWORDS))
        self.assertEqual(provider.queries, ["cloud costs", TITLE])
        self.assertEqual(cover["attribution"], "Photo by Ana on Unsplash")

    def test_link_checker_skips_non_http_urls(self):
        self.assertEqual(run_async(LinkChecker().check(["/internal", "mailto:team@example.com"])), {})


class ArtifactsTestCase(unittest.TestCase):

    def test_typed_store_and_phase_tracking(self):
        artifacts = GenerationArtifacts.from_dict({"errors": {"research": "boom"}})
        self.assertEqual(artifacts.first_incomplete_phase(), "research")
        with self.assertRaises(TypeError):
            artifacts.set("research", WriteArtifact())

        artifacts.set("research", ResearchArtifact(text="notes"))
        artifacts.clear_error("research")
        artifacts.set("write", WriteArtifact(sections=[]))
        self.assertFalse(artifacts.is_phase_complete("writing"))
        self.assertEqual(artifacts.first_incomplete_phase(), "outline")

        restored = GenerationArtifacts.from_dict(artifacts.to_dict())
        self.assertEqual(restored.research.text, "notes")
        self.assertEqual(restored.errors, {})
        self.assertNotIn("write", restored.public_view())


class DatabaseOperationsTestCase(unittest.TestCase):
    """Covers CRUD helpers inside seo_writer.database.operations."""

    def setUp(self):
        reset_database()

    def test_article_and_run_flow(self):
        article = create_scenario_article()
        db_ops.update_article(article.id, status="generating")
        self.assertEqual(db_ops.get_article(article.id).status, "generating")

        run = db_ops.create_run(article.id)
        self.assertTrue(run.is_active)
        self.assertEqual(db_ops.get_active_run(article.id).id, run.id)

        db_ops.update_run(run.id, progress=50)
        db_ops.update_run(run.id, progress=30)
        self.assertEqual(db_ops.get_run(run.id).progress, 50)

        db_ops.update_run(run.id, status="failed", error="boom", completed=True)
        self.assertIsNone(db_ops.get_active_run(article.id))
        reopened = db_ops.reopen_run(run.id)
        self.assertEqual(reopened.status, "queued")
        self.assertIsNone(reopened.error)
        self.assertEqual(db_ops.get_latest_run(article.id).id, run.id)
        self.assertEqual(len(db_ops.get_runs(article.id)), 1)


class OrchestratorTestCase(unittest.TestCase):
    """End-to-end runs against stubbed providers."""

    def setUp(self):
        reset_database()

    def test_full_generation_run(self):
        events = []

        async def listener(article_id, event):
            events.append(event)

        llm = StubLLM()
        links = StubLinkChecker()
        orchestrator = make_orchestrator(llm=llm, links=links, on_progress=listener)
        article = create_scenario_article()

        async def scenario():
            result = await orchestrator.start_generation(article.id)
            self.assertEqual(result["status"], "started")
            return await orchestrator.wait(result["run_id"])

        run = run_async(scenario())
        self.assertEqual(run.status, "complete")
        self.assertEqual(run.progress, 100)
        self.assertIsNone(run.error)

        stored = db_ops.get_article(article.id)
        self.assertEqual(stored.status, "generated")
        self.assertTrue(stored.publish_ready)
        self.assertEqual(stored.slug, "5-ways-to-reduce-cloud-costs")
        self.assertEqual(stored.content.count("\n## "), 4)
        self.assertEqual(stored.cover_image_url, "https://images.example.com/a.jpg")

        artifacts = GenerationArtifacts.from_dict(run.artifacts)
        self.assertIsNone(artifacts.first_incomplete_phase())
        total_words = sum(s.word_count for s in artifacts.write.sections)
        self.assertLessEqual(abs(total_words - 1000), 100)
        self.assertTrue(artifacts.quality_control.is_valid)
        self.assertEqual(len(artifacts.quality_control.history), 1)
        self.assertEqual(len(artifacts.screenshots.approved), 1)
        self.assertEqual(artifacts.screenshots.rejected, [])
        self.assertGreater(artifacts.cache_metrics.calls, 0)
        self.assertGreater(artifacts.cache_metrics.cache_read_tokens, 0)

        self.assertEqual(llm.count("research"), 1)
        self.assertEqual(llm.count("outline"), 1)
        self.assertEqual([e["phase"] for e in events if e["type"] == "phase"],
                         ["research", "outline", "writing", "quality_control", "validation"])
        section_progress = [e["progress"] for e in events if e["type"] == "section"]
        self.assertEqual(section_progress, [35, 50, 65, 80])
        self.assertEqual(events[-1]["type"], "complete")

        status = orchestrator.get_generation_status(article.id)
        self.assertEqual(status["status"], "complete")
        self.assertEqual(status["progress_percent"], 100)
        self.assertIn("write", status["artifacts"])

    def test_trigger_is_idempotent_while_running(self):
        orchestrator = make_orchestrator()
        article = create_scenario_article()

        async def scenario():
            first = await orchestrator.start_generation(article.id)
            second = await orchestrator.start_generation(article.id)
            await orchestrator.wait(first["run_id"])
            return first, second

        first, second = run_async(scenario())
        self.assertEqual(second["status"], "already_running")
        self.assertEqual(second["run_id"], first["run_id"])
        self.assertEqual(len(db_ops.get_runs(article.id)), 1)

    def test_failed_run_resumes_from_saved_artifacts(self):
        llm = StubLLM(failures={"section_section-3": 2})
        sleep = RecordingSleep()
        images = StubImageProvider(error="image search unavailable")
        orchestrator = make_orchestrator(llm=llm, images=images, sleep=sleep)
        article = create_scenario_article()

        async def scenario():
            run_id = await orchestrator.start(article.id)
            failed = await orchestrator.wait(run_id)
            resumed_id = await orchestrator.start(article.id)
            return failed, await orchestrator.wait(resumed_id)

        failed, finished = run_async(scenario())
        self.assertEqual(failed.status, "failed")
        self.assertIn("stub outage", failed.error)
        self.assertIn("writing", failed.artifacts["errors"])

        self.assertEqual(finished.id, failed.id)
        self.assertEqual(finished.status, "complete")
        self.assertEqual(llm.count("research"), 1)
        self.assertEqual(llm.count("outline"), 1)
        self.assertEqual(llm.count("section_section-1"), 1)
        self.assertEqual(llm.count("section_section-2"), 1)
        self.assertEqual(llm.count("section_section-3"), 3)
        self.assertEqual(llm.count("section_section-4"), 1)
        self.assertEqual(sleep.delays, [1.0])

        artifacts = GenerationArtifacts.from_dict(finished.artifacts)
        self.assertEqual(artifacts.errors, {})
        self.assertEqual(artifacts.cover_image.error, "image search unavailable")
        self.assertIsNone(db_ops.get_article(article.id).cover_image_url)

    def test_unexpected_asset_errors_do_not_fail_the_run(self):
        class BrokenImages(StubImageProvider):
            async def search(self, query, limit=10):
                raise RuntimeError("unexpected payload")

        class ScreenshotResolverDown(StubLinkChecker):
            async def check(self, urls):
                if any("rightsizing-guide" in url for url in urls):
                    raise ValueError("resolver crashed")
                return await super().check(urls)

        orchestrator = make_orchestrator(images=BrokenImages(), links=ScreenshotResolverDown())
        article = create_scenario_article()

        async def scenario():
            run_id = await orchestrator.start(article.id)
            return await orchestrator.wait(run_id)

        run = run_async(scenario())
        self.assertEqual(run.status, "complete")
        self.assertIsNone(run.error)

        artifacts = GenerationArtifacts.from_dict(run.artifacts)
        self.assertEqual(artifacts.errors, {})
        self.assertEqual(artifacts.cover_image.error, "unexpected payload")
        self.assertEqual(artifacts.screenshots.error, "resolver crashed")
        self.assertEqual(artifacts.screenshots.approved, [])

        stored = db_ops.get_article(article.id)
        self.assertEqual(stored.status, "generated")
        self.assertIsNone(stored.cover_image_url)

    def test_missing_template_fails_without_retry(self):
        llm = StubLLM()
        sleep = RecordingSleep()
        orchestrator = make_orchestrator(llm=llm, sleep=sleep)
        article = create_scenario_article(structure_template=None)

        async def scenario():
            run_id = await orchestrator.start(article.id)
            return await orchestrator.wait(run_id)

        run = run_async(scenario())
        self.assertEqual(run.status, "failed")
        self.assertEqual(run.phase, "outline")
        self.assertIn("outline", run.artifacts["errors"])
        self.assertEqual(llm.count("outline"), 0)
        self.assertEqual(sleep.delays, [])
        self.assertEqual(db_ops.get_article(article.id).status, "failed")
        self.assertEqual(orchestrator.get_generation_status(article.id)["status"], "failed")

    def test_quality_fixes_rewrite_only_flagged_sections(self):
        def section_two(messages):
            if "at least" in user_prompt(messages):
                return section_body(300, SOURCES[1])
            return section_body(60, SOURCES[1])

        llm = StubLLM(responses={"section_section-2": section_two})
        config = TEST_CONFIG.model_copy(update={"TEMPLATE_COMPLIANCE_THRESHOLD": 0.95})
        orchestrator = make_orchestrator(llm=llm, config=config)
        article = create_scenario_article()

        async def scenario():
            run_id = await orchestrator.start(article.id)
            return await orchestrator.wait(run_id)

        run = run_async(scenario())
        self.assertEqual(run.status, "complete")
        artifacts = GenerationArtifacts.from_dict(run.artifacts)
        qc = artifacts.quality_control
        self.assertEqual(len(qc.history), 2)
        self.assertFalse(qc.history[0].is_valid)
        self.assertEqual(qc.report.run_label, "post-update")
        self.assertEqual(qc.report.run_count, 2)
        self.assertTrue(qc.is_valid)

        self.assertEqual(llm.count("section_section-2"), 2)
        self.assertEqual(llm.count("section_section-1"), 1)
        self.assertGreaterEqual(artifacts.write.sections[1].word_count, 270)
        self.assertTrue(db_ops.get_article(article.id).publish_ready)

    def test_inner_section_headings_keep_quality_control_targeted(self):
        half = section_body(150, SOURCES[1])
        llm = StubLLM(responses={"section_section-2": f"{half}\n\n## Where the money goes\n\n{half}"})
        orchestrator = make_orchestrator(llm=llm)
        article = create_scenario_article()

        async def scenario():
            run_id = await orchestrator.start(article.id)
            return await orchestrator.wait(run_id)

        run = run_async(scenario())
        self.assertEqual(run.status, "complete")
        qc = GenerationArtifacts.from_dict(run.artifacts).quality_control
        self.assertTrue(qc.is_valid)
        self.assertEqual(len(qc.history), 1)
        self.assertEqual(llm.count("section_section-2"), 1)
        self.assertEqual(llm.count("section_section-3"), 1)

        stored = db_ops.get_article(article.id)
        self.assertEqual(stored.content.count("\n## "), 4)
        self.assertIn("### Where the money goes", stored.content)

    def test_cancel_stops_between_sections(self):
        llm = StubLLM()
        orchestrator = make_orchestrator(llm=llm)
        article = create_scenario_article()
        cancelled = []

        async def listener(article_id, event):
            if event["type"] == "section" and not cancelled:
                cancelled.append(event["run_id"])
                await orchestrator.cancel(event["run_id"])

        orchestrator.on_progress = listener

        async def scenario():
            run_id = await orchestrator.start(article.id)
            return await orchestrator.wait(run_id)

        run = run_async(scenario())
        self.assertEqual(run.status, "failed")
        self.assertEqual(run.error, "cancelled")
        self.assertEqual(llm.count("section_section-2"), 0)
        self.assertEqual(db_ops.get_article(article.id).status, "failed")

    def test_unknown_ids(self):
        orchestrator = make_orchestrator()
        with self.assertRaises(RunNotFound):
            orchestrator.status("missing")
        with self.assertRaises(RunNotFound):
            run_async(orchestrator.cancel("missing"))
        with self.assertRaises(ArticleNotFound):
            run_async(orchestrator.start("missing"))
        with self.assertRaises(ArticleNotFound):
            orchestrator.get_generation_status("missing")

        article = create_scenario_article()
        idle = orchestrator.get_generation_status(article.id)
        self.assertEqual(idle["status"], "idle")
        self.assertIsNone(idle["run_id"])


class ConnectionManagerTestCase(unittest.TestCase):
    """Covers websocket connection lifecycle helpers."""

    def test_connection_manager_tracks_clients(self):
        manager = ConnectionManager()

        class DummyWebSocket:
            def __init__(self, fail=False):
                self.accepted = False
                self.messages = []
                self.fail = fail

            async def accept(self):
                self.accepted = True

            async def send_json(self, data):
                if self.fail:
                    raise RuntimeError("socket closed")
                self.messages.append(data)

        async def scenario():
            socket = DummyWebSocket()
            dead = DummyWebSocket(fail=True)
            await manager.connect(socket, "article-x")
            await manager.connect(dead, "article-y")
            await manager.send_progress("article-x", {"type": "phase", "phase": "research"})
            await manager.send_error("article-x", "boom")
            await manager.send_progress("article-y", {"type": "phase"})
            return socket

        socket = run_async(scenario())
        self.assertTrue(socket.accepted)
        self.assertEqual(socket.messages[0],
                         {"type": "generation", "data": {"type": "phase", "phase": "research"}})
        self.assertEqual(socket.messages[1]["type"], "error")
        self.assertNotIn("article-y", manager.active_connections)


import seo_writer.api.routes as routes_module  # pylint: disable=wrong-import-position
import seo_writer.main as main_module  # pylint: disable=wrong-import-position
from fastapi import HTTPException  # pylint: disable=wrong-import-position


class APIRoutesTestCase(unittest.TestCase):
    """Hits the FastAPI route functions directly with stubbed dependencies."""

    def setUp(self):
        reset_database()
        routes_module.orchestrator = make_orchestrator()

    def test_create_generate_and_poll(self):
        request = routes_module.ArticleCreate(
            title=TITLE, keywords=KEYWORDS, structure_template=TEMPLATE, max_words=1000,
        )
        created = run_async(routes_module.create_article(request))
        self.assertTrue(created["success"])
        article_id = created["article"]["id"]
        self.assertEqual(created["article"]["status"], "idea")

        async def scenario():
            started = await routes_module.generate_article(article_id)
            await routes_module.orchestrator.wait(started["run_id"])
            return started

        started = run_async(scenario())
        self.assertEqual(started["status"], "started")

        status = run_async(routes_module.get_generation_status(article_id))
        self.assertEqual(status["status"], "complete")
        self.assertEqual(status["progress_percent"], 100)

        run = run_async(routes_module.get_run(started["run_id"]))
        self.assertEqual(run["run"]["status"], "complete")

        article = run_async(routes_module.get_article(article_id))
        self.assertTrue(article["article"]["publish_ready"])

        cancelled = run_async(routes_module.cancel_run(started["run_id"]))
        self.assertEqual(cancelled["run"]["status"], "complete")

    def test_unknown_resources_return_404(self):
        for call in (
            routes_module.get_article("missing"),
            routes_module.generate_article("missing"),
            routes_module.get_generation_status("missing"),
            routes_module.get_run("missing"),
            routes_module.cancel_run("missing"),
        ):
            with self.assertRaises(HTTPException) as ctx:
                run_async(call)
            self.assertEqual(ctx.exception.status_code, 404)

    def test_health_check(self):
        health = run_async(main_module.health_check())
        self.assertEqual(health["status"], "healthy")


if __name__ == "__main__":
    unittest.main(verbosity=2)

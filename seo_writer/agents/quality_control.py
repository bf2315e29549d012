"""Final quality gate for an assembled article.

Deterministic structural, link and SEO checks feed the template compliance
score. One holistic model review adds editorial issues. Issues that can be
traced to a section carry its id so the orchestrator can rewrite just that
section.
"""
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from seo_writer.config import settings
from seo_writer.agents.artifacts import WriteArtifact
from seo_writer.agents.generator import LLMProvider
from seo_writer.agents.links import LinkChecker
from seo_writer.agents.schemas import (
    CategoryResult, HolisticReviewDraft, Outline, QualityControlIssue,
    QualityControlReport, QUALITY_CATEGORIES, TemplateCompliance,
)
from seo_writer.utils.prompts import PromptConfig, DEFAULT_PROMPTS
from seo_writer.utils.text import (
    TLDR_RE, count_words, extract_images, extract_links, markdown_headings,
    parse_markdown_sections,
)
from seo_writer.utils.logger import logger

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class CheckRecorder:
    """Counts every check run and collects the issues of the ones that failed."""

    def __init__(self):
        self.total = 0
        self.violations = 0
        self.issues: List[QualityControlIssue] = []

    def check(self, name: str, passed: bool, category: str, severity: str,
              description: str, required_fix: str, section_id: Optional[str] = None):
        self.total += 1
        if passed:
            return
        self.violations += 1
        self.issues.append(QualityControlIssue(
            category=category, severity=severity, description=description,
            required_fix=required_fix, section_id=section_id, check=name,
        ))


def _section_bodies(content: str, outline: Outline
                    ) -> Tuple[List[Tuple[str, str, str]], List[Tuple[Optional[str], str]]]:
    """Split an assembled article into its outline sections by H2 heading text.

    Returns ``(section_id, heading, body)`` per section found, plus the stray
    H2 headings that match no outline section, each paired with the id of the
    section it appears in. A stray block's text counts toward that section.
    """
    labels = {s.label.strip().lower(): s.id for s in outline.sections}
    bodies: List[List[str]] = []
    strays: List[Tuple[Optional[str], str]] = []
    for block in parse_markdown_sections(content):
        if not block["heading"]:
            continue
        section_id = labels.get(block["heading"].strip().lower())
        if section_id is not None and all(b[0] != section_id for b in bodies):
            bodies.append([section_id, block["heading"], block["content"]])
            continue
        owner = bodies[-1] if bodies else None
        strays.append((owner[0] if owner else None, block["heading"]))
        if owner is not None:
            owner[2] = f"{owner[2]}\n\n{block['content']}".strip()
    return [(b[0], b[1], b[2]) for b in bodies], strays


def _is_internal(url: str, site_domain: Optional[str]) -> bool:
    if url.startswith("/") or url.startswith("#"):
        return True
    if not site_domain:
        return False
    host = (urlparse(url).hostname or "").lower()
    site = site_domain.lower()
    return host == site or host.endswith("." + site)


class QualityControlGate:

    def __init__(self, provider: LLMProvider, prompts: Optional[PromptConfig] = None,
                 link_checker: Optional[LinkChecker] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, threshold: Optional[float] = None,
                 site_domain: Optional[str] = None):
        self.provider = provider
        self.prompts = prompts or DEFAULT_PROMPTS
        self.link_checker = link_checker
        self.model = model or settings.QUALITY_CONTROL_MODEL
        self.timeout = timeout if timeout is not None else settings.QUALITY_CONTROL_TIMEOUT
        self.threshold = threshold if threshold is not None else settings.TEMPLATE_COMPLIANCE_THRESHOLD
        self.site_domain = site_domain or settings.SITE_DOMAIN

    async def evaluate(self, article: WriteArtifact, outline: Outline, run_count: int = 1,
                       run_label: str = "initial") -> QualityControlReport:
        broken: Dict[str, str] = {}
        if self.link_checker is not None:
            external = [url for _, url in extract_links(article.content)
                        if url.startswith("http") and not _is_internal(url, self.site_domain)]
            broken = await self.link_checker.check(external)

        recorder = self.run_checks(article, outline, broken)
        holistic = await self.holistic_review(article.content, outline)

        issues = recorder.issues + holistic
        compliance = TemplateCompliance(
            score=round(1 - recorder.violations / recorder.total, 4) if recorder.total else 1.0,
            total_checks=recorder.total,
            violations=recorder.violations,
        )
        categories = [
            CategoryResult(
                category=category,
                passed=not any(i.category == category for i in issues),
                issue_count=sum(1 for i in issues if i.category == category),
            )
            for category in QUALITY_CATEGORIES
        ]
        has_critical = any(i.severity == "critical" for i in issues)
        report = QualityControlReport(
            issues=issues,
            categories=categories,
            template_compliance=compliance,
            is_valid=compliance.score > self.threshold and not has_critical,
            run_count=run_count,
            run_label=run_label,
        )
        logger.info(
            f"Quality control ({run_label} #{run_count}): compliance {compliance.score:.2f} "
            f"({compliance.violations}/{compliance.total_checks} violations), "
            f"{len(issues)} issues, valid={report.is_valid}"
        )
        return report

    def run_checks(self, article: WriteArtifact, outline: Outline,
                   broken_links: Optional[Dict[str, str]] = None) -> CheckRecorder:
        content = article.content
        recorder = CheckRecorder()
        bodies, strays = _section_bodies(content, outline)

        # Structure
        h1_count = len(markdown_headings(content, 1))
        recorder.check(
            "h1_count", h1_count == 1, "structure", "critical",
            f"Article has {h1_count} H1 headings", "Use exactly one H1 heading for the article title",
        )
        h2_count = len(markdown_headings(content, 2))
        recorder.check(
            "h2_count", h2_count == len(outline.sections), "structure", "critical",
            f"Article has {h2_count} H2 sections, the template declares {len(outline.sections)}",
            "Keep the section heading as the only H2 and use H3 for sub-headings"
            if strays else "Restore the section structure declared by the template",
            strays[0][0] if strays else None,
        )

        if outline.declares("tldr"):
            tldr_blocks = len(TLDR_RE.findall(content))
            tldr_id = next(s.id for s in outline.sections if s.type == "tldr")
            recorder.check(
                "tldr_single", tldr_blocks <= 1, "structure", "high",
                f"Found {tldr_blocks} TL;DR blocks", "Keep a single TL;DR block", tldr_id,
            )

        if outline.declares("faq"):
            faq_spec = next(s for s in outline.sections if s.type == "faq")
            faq_body = next((body for sid, _, body in bodies if sid == faq_spec.id), "")
            faq_items = len(markdown_headings(faq_body, 3))
            recorder.check(
                "faq_count", settings.MIN_FAQ_ITEMS <= faq_items <= settings.MAX_FAQ_ITEMS,
                "structure", "medium",
                f"FAQ has {faq_items} questions",
                f"Provide between {settings.MIN_FAQ_ITEMS} and {settings.MAX_FAQ_ITEMS} FAQ questions as H3 headings",
                faq_spec.id,
            )

        for section_id, heading, body in bodies:
            spec = outline.section(section_id) if section_id else None
            if spec is None:
                continue
            words = count_words(body)
            floor = spec.word_target.min
            recorder.check(
                "section_word_floor", words >= floor, "requirements", "medium",
                f"Section '{heading}' has {words} words, below its {floor} word floor",
                f"Expand '{heading}' to at least {floor} words covering its talking points",
                section_id,
            )

        # Links and citations
        links = [url for _, url in extract_links(content)]
        internal = [u for u in links if _is_internal(u, self.site_domain)]
        external = [u for u in links if u.startswith("http") and not _is_internal(u, self.site_domain)]
        if settings.MIN_INTERNAL_LINKS:
            recorder.check(
                "internal_links", len(internal) >= settings.MIN_INTERNAL_LINKS, "seo", "medium",
                f"{len(internal)} internal links, at least {settings.MIN_INTERNAL_LINKS} required",
                "Link to related articles on this site",
            )
        recorder.check(
            "external_links", len(external) >= settings.MIN_EXTERNAL_LINKS, "seo", "medium",
            f"{len(external)} external links, at least {settings.MIN_EXTERNAL_LINKS} required",
            "Cite research sources with inline links",
        )

        broken_links = broken_links or {}
        broken_sections = [
            (section_id, url)
            for section_id, _, body in bodies
            for _, url in extract_links(body) if url in broken_links
        ]
        recorder.check(
            "broken_links", not broken_links, "seo", "high",
            f"Broken external links: {', '.join(f'{u} ({r})' for u, r in broken_links.items())}",
            "Replace or remove the unreachable links",
            broken_sections[0][0] if broken_sections else None,
        )

        source_urls = {s.url.rstrip("/") for s in outline.sources}
        cited = {u.rstrip("/") for u in external} & source_urls
        required_citations = min(settings.MIN_CITED_SOURCES, len(source_urls))
        recorder.check(
            "cited_sources", len(cited) >= required_citations, "requirements", "medium",
            f"{len(cited)} research sources cited, at least {required_citations} required",
            "Link the research sources that support the article's claims",
        )

        images = extract_images(content)
        missing_alt = [url for alt, url in images if not alt.strip()]
        recorder.check(
            "image_alt_text", not missing_alt, "seo", "high",
            f"{len(missing_alt)} images have no alt text", "Add descriptive alt text to every image",
        )
        recorder.check(
            "image_count", len(images) <= settings.MAX_IMAGES, "structure", "medium",
            f"Article has {len(images)} images", f"Keep at most {settings.MAX_IMAGES} images",
        )
        clustered = [sid for sid, _, body in bodies if len(extract_images(body)) > 1]
        recorder.check(
            "image_spacing", not clustered, "structure", "low",
            "Several images are clustered in one section", "Spread images across sections",
            clustered[0] if clustered else None,
        )

        # SEO
        primary = outline.keywords[0].lower() if outline.keywords else ""
        h1_headings = markdown_headings(content, 1)
        title_text = (h1_headings[0] if h1_headings else outline.title).lower()
        recorder.check(
            "keyword_in_title", not primary or primary in title_text or primary in outline.title.lower(),
            "seo", "high",
            f"Primary keyword '{primary}' is missing from the title",
            "Work the primary keyword into the H1 title",
        )
        meta = article.meta_description
        recorder.check(
            "meta_description", 0 < len(meta) <= settings.META_DESCRIPTION_MAX, "seo", "high",
            f"Meta description is {len(meta)} characters",
            f"Write a meta description of at most {settings.META_DESCRIPTION_MAX} characters",
        )
        recorder.check(
            "slug", bool(SLUG_RE.match(article.slug or "")), "seo", "critical",
            f"Slug '{article.slug}' is missing or not URL-safe",
            "Use a lowercase, hyphen-separated slug",
        )
        return recorder

    async def holistic_review(self, content: str, outline: Outline) -> List[QualityControlIssue]:
        summary = {
            "title": outline.title,
            "keywords": outline.keywords,
            "content_strategy": outline.content_strategy,
            "sections": [
                {"heading": s.label, "type": s.type, "talking_points": s.talking_points}
                for s in outline.sections
            ],
        }
        messages = [
            {"role": "system", "content": self.prompts.QUALITY_CONTROL_SYSTEM},
            {"role": "user", "content": self.prompts.quality_control_prompt(content, summary)},
        ]
        draft, _ = await self.provider.generate_object(
            messages, HolisticReviewDraft, self.model,
            temperature=settings.VALIDATOR_TEMPERATURE,
            timeout=self.timeout,
            purpose="quality_control",
        )
        labels = {s.label.strip().lower(): s.id for s in outline.sections}
        return [
            QualityControlIssue(
                category=issue.category,
                severity=issue.severity,
                description=issue.description,
                required_fix=issue.required_fix,
                section_id=labels.get((issue.section_heading or "").strip().lower()),
                check="holistic_review",
            )
            for issue in draft.issues
        ]


def keep_better(previous: QualityControlReport, candidate: QualityControlReport) -> bool:
    """Whether a post-update report may replace the previous one."""
    return candidate.template_compliance.score >= previous.template_compliance.score

"""Run-level state machine for article generation.

Each run walks research -> outline -> writing -> quality control -> validation.
Every phase writes one artifact and the artifacts map is persisted after each
phase (and after each section while writing), so a failed run restarts at the
first phase whose artifact is missing.
"""
import asyncio
from typing import Awaitable, Callable, Dict, Any, List, Optional

from seo_writer.config import Settings, settings
from seo_writer.agents import narrative as narrative_tracker
from seo_writer.agents.artifacts import (
    PHASES, CoverImageArtifact, GenerationArtifacts, OutlineArtifact,
    QualityControlArtifact, ResearchArtifact, ScreenshotArtifact, WriteArtifact,
)
from seo_writer.agents.assembly import assemble
from seo_writer.agents.cache_optimizer import CacheOptimizer
from seo_writer.agents.critic import SectionCritic
from seo_writer.agents.errors import (
    AlreadyRunning, ArticleNotFound, AssetSelectionFailure, MissingPrecondition,
    MissingResearchData, RunCancelled, RunNotFound,
)
from seo_writer.agents.generator import LLMProvider, MeteredProvider, build_default_provider
from seo_writer.agents.images import ImageSearchProvider, UnsplashImageProvider, select_cover_image
from seo_writer.agents.links import LinkChecker
from seo_writer.agents.outline import OutlineGenerator
from seo_writer.agents.quality_control import QualityControlGate, keep_better
from seo_writer.agents.research import ModelResearchProvider, ResearchProvider
from seo_writer.agents.schemas import (
    ArticleContext, CacheMetrics, GenerationConstraints, Outline, ResearchData, SectionResult,
)
from seo_writer.agents.screenshots import select_screenshots
from seo_writer.agents.section_writer import SectionWriter
from seo_writer.agents.validation import ArticleValidator
from seo_writer.database.models import Article, GenerationRun
from seo_writer.database.operations import DatabaseOperations
from seo_writer.utils.prompts import PromptConfig, DEFAULT_PROMPTS
from seo_writer.utils.logger import logger

PHASE_STATUS: Dict[str, str] = {
    "research": "researching",
    "outline": "outlining",
    "writing": "writing",
    "quality_control": "quality_control",
    "validation": "validating",
}

PHASE_PROGRESS: Dict[str, int] = {
    "research": 10,
    "outline": 20,
    "writing": 80,
    "quality_control": 90,
    "validation": 100,
}

ProgressListener = Callable[[str, Dict[str, Any]], Awaitable[None]]


class RunHandle:
    """In-process handle on a background run."""

    def __init__(self, run_id: str, article_id: str):
        self.run_id = run_id
        self.article_id = article_id
        self.task: Optional[asyncio.Task] = None
        self.cancelled = False
        self.phase: Optional[str] = None


class RunContext:
    """Everything one execution of the pipeline needs."""

    def __init__(self, handle: RunHandle, article: Article, artifacts: GenerationArtifacts,
                 provider: MeteredProvider):
        self.handle = handle
        self.article = article
        self.artifacts = artifacts
        self.provider = provider
        self.side_tasks: List[asyncio.Task] = []

    @property
    def keywords(self) -> List[str]:
        return list(self.article.keywords or [])

    def research_data(self) -> ResearchData:
        research = self.artifacts.research
        if research is None:
            raise MissingResearchData("Research artifact is missing")
        return ResearchData(text=research.text, sources=research.sources)

    def outline(self) -> Outline:
        if self.artifacts.outline is None:
            raise MissingPrecondition("Outline artifact is missing")
        return self.artifacts.outline.outline

    def article_context(self, outline: Outline) -> ArticleContext:
        return ArticleContext(
            title=self.article.title,
            keywords=self.keywords,
            tone_of_voice=self.article.tone_of_voice or settings.DEFAULT_TONE,
            language_code=self.article.language_code or settings.DEFAULT_LANGUAGE,
            content_strategy=outline.content_strategy,
            sources=outline.sources,
        )


class GenerationOrchestrator:

    def __init__(self, db: DatabaseOperations, provider: Optional[LLMProvider] = None,
                 research_provider: Optional[ResearchProvider] = None,
                 image_provider: Optional[ImageSearchProvider] = None,
                 link_checker: Optional[LinkChecker] = None,
                 prompts: Optional[PromptConfig] = None,
                 config: Optional[Settings] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 on_progress: Optional[ProgressListener] = None):
        self.db = db
        self.provider = provider
        self.research_provider = research_provider
        self.image_provider = image_provider
        self.link_checker = link_checker if link_checker is not None else LinkChecker()
        self.prompts = prompts or DEFAULT_PROMPTS
        self.config = config or settings
        self.sleep = sleep
        self.on_progress = on_progress
        self._lock = asyncio.Lock()
        self._handles: Dict[str, RunHandle] = {}

    # Public operations

    async def start(self, article_id: str) -> str:
        """Create (or resume) a run for the article and schedule it in the background."""
        async with self._lock:
            article = self.db.get_article(article_id)
            if article is None:
                raise ArticleNotFound(f"Article {article_id} not found")

            active = self.db.get_active_run(article_id)
            if active is not None:
                handle = self._handles.get(active.id)
                if handle is not None and handle.task is not None and not handle.task.done():
                    raise AlreadyRunning(article_id, active.id)
                # Active in the store but not in this process: pick it back up
                run = active
                logger.log_run(run.id, "resumed", f"orphaned active run for article {article_id}")
            else:
                latest = self.db.get_latest_run(article_id)
                if latest is not None and latest.status == "failed":
                    run = self.db.reopen_run(latest.id)
                    logger.log_run(run.id, "resumed", f"failed run for article {article_id}")
                else:
                    run = self.db.create_run(article_id)
                    logger.log_run(run.id, "started", f"article {article_id}")

            self.db.update_article(article_id, status="generating")
            handle = RunHandle(run.id, article_id)
            handle.task = asyncio.create_task(self._execute(handle))
            self._handles[run.id] = handle
            return run.id

    def status(self, run_id: str) -> GenerationRun:
        run = self.db.get_run(run_id)
        if run is None:
            raise RunNotFound(f"Run {run_id} not found")
        return run

    async def cancel(self, run_id: str) -> GenerationRun:
        """Best effort: in-flight calls finish, their results are dropped."""
        run = self.status(run_id)
        handle = self._handles.get(run_id)
        if handle is not None:
            handle.cancelled = True
        if run.is_active:
            run = self.db.update_run(run_id, status="failed", error="cancelled", completed=True)
            self.db.update_article(run.article_id, status="failed")
            logger.log_run(run_id, "cancelled", f"during {run.phase or 'queued'}")
            await self._emit(run.article_id, {"type": "cancelled", "run_id": run_id})
        return run

    async def wait(self, run_id: str) -> GenerationRun:
        handle = self._handles.get(run_id)
        if handle is not None and handle.task is not None:
            await handle.task
        return self.status(run_id)

    async def start_generation(self, article_id: str) -> Dict[str, Any]:
        """Idempotent trigger: a second call returns the active run instead of starting one."""
        try:
            run_id = await self.start(article_id)
        except AlreadyRunning as e:
            run = self.status(e.run_id)
            return {
                "status": "already_running",
                "message": f"Generation already in progress ({run.status})",
                "run_id": run.id,
                "progress": run.progress,
            }
        return {"status": "started", "message": "Generation started", "run_id": run_id}

    def get_generation_status(self, article_id: str) -> Dict[str, Any]:
        if self.db.get_article(article_id) is None:
            raise ArticleNotFound(f"Article {article_id} not found")
        run = self.db.get_latest_run(article_id)
        if run is None:
            return {"run_id": None, "phase": None, "status": "idle", "progress_percent": 0, "artifacts": {}}
        artifacts = GenerationArtifacts.from_dict(run.artifacts)
        return {
            "run_id": run.id,
            "phase": run.phase,
            "status": run.status,
            "progress_percent": run.progress or 0,
            "error": run.error,
            "artifacts": artifacts.public_view(),
        }

    # Background execution

    async def _execute(self, handle: RunHandle):
        try:
            await self._run_pipeline(handle)
        except RunCancelled:
            logger.log_run(handle.run_id, "cancelled", "stopped at the next checkpoint")
        except Exception as e:
            # Errors surface through the run record; the task itself always completes
            logger.log_run(handle.run_id, "failed", f"{handle.phase or 'setup'}: {str(e)}")
            self._mark_failed(handle, str(e))

    async def _run_pipeline(self, handle: RunHandle):
        run = self.status(handle.run_id)
        article = self.db.get_article(handle.article_id)
        if article is None:
            raise ArticleNotFound(f"Article {handle.article_id} not found")

        artifacts = GenerationArtifacts.from_dict(run.artifacts)
        provider = MeteredProvider(self.provider or build_default_provider(),
                                   artifacts.cache_metrics or CacheMetrics())
        ctx = RunContext(handle, article, artifacts, provider)

        try:
            for phase in PHASES:
                if phase == "writing":
                    self._start_side_branches(ctx)
                if artifacts.is_phase_complete(phase):
                    continue
                self._check_cancelled(handle)
                await self._enter_phase(ctx, phase)
                await self._run_phase(ctx, phase)
                self._check_cancelled(handle)
                await self._complete_phase(ctx, phase)
                if phase == "writing":
                    await self._join_side_branches(ctx)
            await self._join_side_branches(ctx)
        finally:
            if ctx.side_tasks:
                for task in ctx.side_tasks:
                    task.cancel()
                # The run is already failing; the primary error is the one reported
                await asyncio.gather(*ctx.side_tasks, return_exceptions=True)

        self._check_cancelled(handle)
        await self._finalize(ctx)

    async def _run_phase(self, ctx: RunContext, phase: str):
        executor = getattr(self, f"_{phase}_phase")
        attempts = max(1, self.config.PHASE_MAX_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                artifact_key, artifact = await executor(ctx)
            except RunCancelled:
                raise
            except Exception as e:
                retryable = getattr(e, "retryable", False)
                ctx.artifacts.set_error(phase, str(e))
                self._save(ctx)
                if not retryable or attempt >= attempts:
                    logger.log_phase(ctx.handle.run_id, phase, f"failed after {attempt} attempt(s)")
                    raise
                delay = self.config.PHASE_BACKOFF_BASE * (self.config.PHASE_BACKOFF_FACTOR ** (attempt - 1))
                logger.warning(
                    f"Phase {phase} attempt {attempt}/{attempts} failed: {str(e)}; retrying in {delay:.0f}s"
                )
                await self.sleep(delay)
                continue

            self._check_cancelled(ctx.handle)
            ctx.artifacts.set(artifact_key, artifact)
            ctx.artifacts.clear_error(phase)
            return

    # Phase executors

    async def _research_phase(self, ctx: RunContext):
        if not ctx.article.title:
            raise MissingPrecondition("Article has no title")
        researcher = self.research_provider or ModelResearchProvider(ctx.provider, self.prompts)
        research = await researcher.research(ctx.article.title, ctx.keywords, ctx.article.notes)
        if not research.text.strip():
            raise MissingResearchData("Research provider returned no text")
        return "research", ResearchArtifact(text=research.text, sources=research.sources)

    async def _outline_phase(self, ctx: RunContext):
        generator = OutlineGenerator(
            ctx.provider, self.prompts,
            schema_retries=self.config.OUTLINE_SCHEMA_RETRIES,
            max_screenshots=self.config.MAX_SCREENSHOTS,
        )
        outline = await generator.generate(
            ctx.article.title, ctx.keywords, ctx.research_data(),
            ctx.article.structure_template, self._constraints(ctx.article),
        )
        return "outline", OutlineArtifact(outline=outline)

    async def _writing_phase(self, ctx: RunContext):
        outline = ctx.outline()
        article_context = ctx.article_context(outline)
        writer = self._section_writer(ctx.provider)

        partial = ctx.artifacts.write or WriteArtifact()
        accepted = {s.section_id: s for s in partial.sections}
        sections: List[SectionResult] = [accepted[s.id] for s in outline.sections if s.id in accepted]
        if sections:
            logger.info(f"Run {ctx.handle.run_id}: resuming writing with {len(sections)} sections done")

        for spec in outline.sections:
            if spec.id in accepted:
                continue
            self._check_cancelled(ctx.handle)
            context = narrative_tracker.advance(sections, outline)
            result = await writer.write_section(spec, context, article_context, outline, sections)
            self._check_cancelled(ctx.handle)
            sections.append(result)
            ctx.artifacts.set("write", WriteArtifact(sections=list(sections)))
            progress = PHASE_PROGRESS["outline"] + int(
                (PHASE_PROGRESS["writing"] - PHASE_PROGRESS["outline"]) * len(sections) / len(outline.sections)
            )
            self._save(ctx, progress=progress)
            await self._emit(ctx.handle.article_id, {
                "type": "section", "run_id": ctx.handle.run_id,
                "section_id": spec.id, "progress": progress,
            })

        consistency = narrative_tracker.check_consistency(sections, narrative_tracker.advance(sections, outline))
        if not consistency["is_consistent"]:
            logger.info(f"Narrative advisories for run {ctx.handle.run_id}: {consistency['issues']}")
        return "write", assemble(outline, sections, ctx.article.title)

    async def _quality_control_phase(self, ctx: RunContext):
        outline = ctx.outline()
        write = ctx.artifacts.write
        gate = QualityControlGate(
            ctx.provider, self.prompts, link_checker=self.link_checker,
            threshold=self.config.TEMPLATE_COMPLIANCE_THRESHOLD,
            site_domain=self.config.SITE_DOMAIN,
        )
        report = await gate.evaluate(write, outline, run_count=1, run_label="initial")
        history = [report]

        run_count = 1
        while not report.is_valid and run_count < self.config.MAX_QC_RUNS:
            fixes = report.fixes_by_section()
            if not fixes:
                logger.info("Quality issues are not tied to sections; nothing to rewrite")
                break
            self._check_cancelled(ctx.handle)
            sections = await self._rewrite_sections(ctx, outline, write.sections, fixes)
            candidate_write = assemble(outline, sections, ctx.article.title)
            run_count += 1
            candidate = await gate.evaluate(candidate_write, outline, run_count=run_count, run_label="post-update")
            history.append(candidate)
            if keep_better(report, candidate):
                write, report = candidate_write, candidate
                ctx.artifacts.set("write", write)
            else:
                logger.warning(
                    f"Discarding post-update draft: compliance {candidate.template_compliance.score:.2f} "
                    f"< {report.template_compliance.score:.2f}"
                )

        return "qualityControl", QualityControlArtifact(report=report, is_valid=report.is_valid, history=history)

    async def _validation_phase(self, ctx: RunContext):
        validator = ArticleValidator(ctx.provider, self.prompts)
        return "validation", await validator.validate(ctx.artifacts.write, ctx.research_data())

    # Helpers

    def _section_writer(self, provider: LLMProvider) -> SectionWriter:
        critic = SectionCritic(provider, self.prompts, approval_threshold=self.config.SECTION_APPROVAL_THRESHOLD)
        return SectionWriter(provider, self.prompts, critic=critic, max_rewrites=self.config.MAX_REWRITES)

    async def _rewrite_sections(self, ctx: RunContext, outline: Outline, sections: List[SectionResult],
                                fixes: Dict[str, List[str]]) -> List[SectionResult]:
        """Rewrite only the sections with required fixes.

        Narrative context is recomputed from the current accepted set, so a
        section rewritten earlier in this pass feeds the ones after it.
        """
        writer = self._section_writer(ctx.provider)
        article_context = ctx.article_context(outline)
        updated = list(sections)
        for index, section in enumerate(updated):
            if section.section_id not in fixes:
                continue
            spec = outline.section(section.section_id)
            prior = updated[:index]
            context = narrative_tracker.advance(prior, outline)
            logger.info(f"Rewriting {spec.id} with {len(fixes[spec.id])} required fixes")
            updated[index] = await writer.write_section(
                spec, context, article_context, outline, prior, required_fixes=fixes[spec.id]
            )
        return updated

    def _constraints(self, article: Article) -> GenerationConstraints:
        return GenerationConstraints(
            max_words=article.max_words or self.config.DEFAULT_MAX_WORDS,
            tone_of_voice=article.tone_of_voice or self.config.DEFAULT_TONE,
            language_code=article.language_code or self.config.DEFAULT_LANGUAGE,
            notes=article.notes,
            excluded_domains=list(article.excluded_domains or []),
        )

    def _start_side_branches(self, ctx: RunContext):
        if ctx.artifacts.outline is None:
            return
        if ctx.artifacts.cover_image is None:
            ctx.side_tasks.append(asyncio.create_task(self._select_cover(ctx)))
        if ctx.artifacts.screenshots is None:
            ctx.side_tasks.append(asyncio.create_task(self._check_screenshots(ctx)))

    async def _join_side_branches(self, ctx: RunContext):
        pending, ctx.side_tasks = ctx.side_tasks, []
        if pending:
            await asyncio.gather(*pending)
            self._save(ctx)

    async def _select_cover(self, ctx: RunContext):
        """Asset branch: any failure ends up on the artifact, never on the run."""
        provider = self.image_provider or UnsplashImageProvider()
        try:
            cover = await select_cover_image(provider, ctx.article.title, ctx.keywords)
            artifact = CoverImageArtifact(**cover)
        except AssetSelectionFailure as e:
            logger.warning(f"Cover image selection failed for {ctx.handle.article_id}: {str(e)}")
            artifact = CoverImageArtifact(error=str(e))
        except Exception as e:
            logger.warning(
                f"Cover image selection failed for {ctx.handle.article_id}: {type(e).__name__}: {str(e)}"
            )
            artifact = CoverImageArtifact(error=str(e) or type(e).__name__)
        ctx.artifacts.set("coverImage", artifact)

    async def _check_screenshots(self, ctx: RunContext):
        try:
            outline = ctx.outline()
            approved, rejected = select_screenshots(
                outline.priority_screenshots, ctx.article.excluded_domains or [], self.config.MAX_SCREENSHOTS
            )
            broken = await self.link_checker.check([s.url for s in approved]) if approved else {}
        except Exception as e:
            logger.warning(
                f"Screenshot check failed for {ctx.handle.article_id}: {type(e).__name__}: {str(e)}"
            )
            ctx.artifacts.set("screenshots", ScreenshotArtifact(error=str(e) or type(e).__name__))
            return
        reachable = [s for s in approved if s.url not in broken]
        rejected += [{"url": url, "category": "unreachable", "reason": reason} for url, reason in broken.items()]
        ctx.artifacts.set("screenshots", ScreenshotArtifact(approved=reachable, rejected=rejected))
        logger.info(f"Screenshots for {ctx.handle.article_id}: {len(reachable)} kept, {len(rejected)} rejected")

    async def _enter_phase(self, ctx: RunContext, phase: str):
        ctx.handle.phase = phase
        self.db.update_run(ctx.handle.run_id, status=PHASE_STATUS[phase], phase=phase)
        logger.log_phase(ctx.handle.run_id, phase, "started")
        await self._emit(ctx.handle.article_id, {"type": "phase", "run_id": ctx.handle.run_id, "phase": phase})

    async def _complete_phase(self, ctx: RunContext, phase: str):
        progress = PHASE_PROGRESS[phase]
        self._save(ctx, progress=progress)
        logger.log_phase(ctx.handle.run_id, phase, "completed", progress)
        await self._emit(ctx.handle.article_id, {
            "type": "progress", "run_id": ctx.handle.run_id, "phase": phase, "progress": progress,
        })

    async def _finalize(self, ctx: RunContext):
        artifacts = ctx.artifacts
        write = artifacts.write
        qc = artifacts.quality_control
        validation = artifacts.validation
        cover = artifacts.cover_image
        publish_ready = bool(qc and qc.is_valid and validation and validation.is_valid)

        self._save(ctx, progress=100)
        self.db.update_run(ctx.handle.run_id, status="complete", progress=100, completed=True)
        self.db.update_article(
            ctx.handle.article_id,
            status="generated",
            content=write.content,
            slug=write.slug,
            meta_description=write.meta_description,
            tags=list(write.tags),
            cover_image_url=cover.image_url if cover else None,
            cover_image_alt=cover.alt_text if cover else None,
            publish_ready=publish_ready,
        )
        logger.log_cache_metrics(ctx.handle.run_id, CacheOptimizer.summary(ctx.provider.metrics))
        logger.log_run(ctx.handle.run_id, "complete", f"publish_ready={publish_ready}")
        await self._emit(ctx.handle.article_id, {
            "type": "complete", "run_id": ctx.handle.run_id, "publish_ready": publish_ready,
        })

    def _save(self, ctx: RunContext, progress: Optional[int] = None):
        if ctx.handle.cancelled:
            return
        ctx.artifacts.set("cacheMetrics", ctx.provider.metrics)
        self.db.update_run(ctx.handle.run_id, progress=progress, artifacts=ctx.artifacts.to_dict())

    def _mark_failed(self, handle: RunHandle, message: str):
        if handle.cancelled:
            return
        run = self.db.get_run(handle.run_id)
        if run is not None:
            artifacts = GenerationArtifacts.from_dict(run.artifacts)
            if handle.phase and handle.phase not in artifacts.errors:
                artifacts.set_error(handle.phase, message)
            elif not handle.phase:
                artifacts.set_error("setup", message)
            self.db.update_run(handle.run_id, status="failed", error=message,
                               artifacts=artifacts.to_dict(), completed=True)
        self.db.update_article(handle.article_id, status="failed")

    @staticmethod
    def _check_cancelled(handle: RunHandle):
        if handle.cancelled:
            raise RunCancelled(f"Run {handle.run_id} was cancelled")

    async def _emit(self, article_id: str, event: Dict[str, Any]):
        if self.on_progress is not None:
            await self.on_progress(article_id, event)

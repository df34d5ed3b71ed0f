"""Generation pipeline: drives one article through the ordered generation phases."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from database.repositories.article_repo import ArticleRepository
from shared.config import settings
from shared.errors import FatalError, PhaseError, RecoverableError
from shared.status import GenerationPhase
from shared.utils import calculate_exponential_backoff

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], Awaitable[None]]

# Share of overall progress owned by each phase, in execution order
PHASE_WEIGHTS: Tuple[Tuple[str, int], ...] = (
    (GenerationPhase.RESEARCH.value, 10),
    (GenerationPhase.OUTLINE.value, 10),
    (GenerationPhase.WRITING.value, 30),
    (GenerationPhase.IMAGE_SELECTION.value, 10),
    (GenerationPhase.QUALITY_CONTROL.value, 10),
    (GenerationPhase.VALIDATING.value, 10),
    (GenerationPhase.UPDATING.value, 10),
    (GenerationPhase.SEO_AUDIT.value, 10),
)

CORE_PHASES: Tuple[str, ...] = tuple(name for name, _ in PHASE_WEIGHTS[:6])
CONDITIONAL_PHASES: Tuple[str, ...] = (
    GenerationPhase.UPDATING.value,
    GenerationPhase.SEO_AUDIT.value,
)


def cumulative_progress(phase: str) -> int:
    """Progress reached once the given phase has completed."""
    if phase == GenerationPhase.COMPLETED.value:
        return 100
    total = 0
    for name, weight in PHASE_WEIGHTS:
        total += weight
        if name == phase:
            return total
    raise ValueError(f"Unknown phase: {phase}")


def normalize_issues(raw: Any) -> List[Dict[str, Any]]:
    """Coerce capability issue output into a list of dicts."""
    if not raw:
        return []
    if isinstance(raw, dict):
        raw = raw.get("issues", [])
    issues = []
    for issue in raw:
        if isinstance(issue, dict):
            issues.append(issue)
        else:
            issues.append({"summary": str(issue)})
    return issues


def fixable_issues(issues: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [issue for issue in issues if issue.get("fixable", True) is not False]


def format_issues(issues: List[Dict[str, Any]]) -> Optional[str]:
    """Render issues as a markdown report."""
    if not issues:
        return None
    lines = []
    for issue in issues:
        severity = issue.get("severity", "medium")
        category = issue.get("category", "general")
        summary = issue.get("summary") or issue.get("issue") or "Unspecified issue"
        location = f" (Location: {issue['location']})" if issue.get("location") else ""
        lines.append(f"- **{severity}** [{category}] {summary}{location}")
        fix = issue.get("required_fix") or issue.get("correction")
        if fix:
            lines.append(f"  - Required fix: {fix}")
    return "\n".join(lines)


def extract_sources(research_data: Any) -> List[str]:
    if not isinstance(research_data, dict):
        return []
    sources = []
    for source in research_data.get("sources") or []:
        if isinstance(source, dict):
            url = source.get("url")
            if not url:
                continue
            title = source.get("title")
            sources.append(f"{title} - {url}" if title else url)
        elif source:
            sources.append(str(source))
    return sources


@dataclass(frozen=True)
class PhasePlan:
    """
    Which phases a run executes.

    The plan starts as ``pending`` (core phases only) and is resolved once,
    after validation, into ``clean``, ``revise`` or ``revise_and_audit``.
    Progress for a phase is the cumulative weight through that phase, so the
    share of a skipped conditional phase folds into the next phase that runs.
    """

    kind: str
    phases: Tuple[str, ...]
    issues: Tuple[Dict[str, Any], ...] = ()

    PENDING = "pending"
    CLEAN = "clean"
    REVISE = "revise"
    REVISE_AND_AUDIT = "revise_and_audit"

    @classmethod
    def pending(cls) -> "PhasePlan":
        return cls(cls.PENDING, CORE_PHASES)

    @classmethod
    def resolve(
        cls,
        quality_issues: List[Dict[str, Any]],
        validation_issues: List[Dict[str, Any]]
    ) -> "PhasePlan":
        fixable = fixable_issues(list(quality_issues) + list(validation_issues))
        if not fixable:
            return cls(cls.CLEAN, CORE_PHASES)
        if any(issue.get("category") == "seo" for issue in fixable):
            return cls(cls.REVISE_AND_AUDIT, CORE_PHASES + CONDITIONAL_PHASES, tuple(fixable))
        return cls(cls.REVISE, CORE_PHASES + (GenerationPhase.UPDATING.value,), tuple(fixable))

    def includes(self, phase: str) -> bool:
        return phase in self.phases

    @property
    def skipped(self) -> Tuple[str, ...]:
        if self.kind == self.PENDING:
            return ()
        return tuple(phase for phase in CONDITIONAL_PHASES if phase not in self.phases)

    def progress_for(self, phase: str) -> int:
        if phase != GenerationPhase.COMPLETED.value and phase not in self.phases:
            raise ValueError(f"Phase {phase} is not part of the {self.kind} plan")
        return cumulative_progress(phase)

    def to_document(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "phases": list(self.phases),
            "skipped": list(self.skipped),
        }


@dataclass
class GenerationContext:
    """Generation inputs captured when the run claims the article."""

    article_id: str
    title: str
    keywords: List[str]
    notes: Optional[str]
    plan: PhasePlan = field(default_factory=PhasePlan.pending)
    current_phase: Optional[str] = None

    @classmethod
    def from_article(cls, article: Dict[str, Any]) -> "GenerationContext":
        keywords = list(article.get("keywords") or [])
        return cls(
            article_id=article["_id"],
            title=article["title"],
            keywords=keywords or [article["title"]],
            notes=article.get("notes"),
        )


def _as_text(value: Any, phase: str) -> str:
    if isinstance(value, dict):
        value = value.get("content")
    if not isinstance(value, str) or not value.strip():
        raise FatalError(f"{phase} returned no content", phase=phase)
    return value


class GenerationPipeline:
    """Runs the research-to-publish-ready phase sequence for a single article."""

    def __init__(
        self,
        article_repo: ArticleRepository,
        generator,
        on_progress: Optional[ProgressCallback] = None,
        phase_timeout: float = None,
        phase_max_attempts: int = None,
        retry_base_delay: float = None,
        retry_max_delay: float = None
    ):
        self.article_repo = article_repo
        self.generator = generator
        self.on_progress = on_progress
        self.phase_timeout = phase_timeout or settings.phase_timeout
        self.phase_max_attempts = phase_max_attempts or settings.phase_max_attempts
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.phase_retry_base_delay
        )
        self.retry_max_delay = (
            retry_max_delay if retry_max_delay is not None else settings.phase_retry_max_delay
        )

    async def run(self, article_id: str) -> Dict[str, Any]:
        """
        Generate one article.

        Claims the article (scheduled -> generating) first; raises
        ConflictError if another run holds it. Any phase failure moves the
        article to failed and is re-raised as a PhaseError.
        """
        article = await self.article_repo.claim_for_generation(article_id)
        logger.info(f"Generation started for article {article_id}")
        await self._notify(article)

        context = GenerationContext.from_article(article)
        try:
            return await self._run_phases(context)
        except PhaseError as e:
            await self._abort(context, e.with_phase(context.current_phase))
            raise
        except Exception as e:
            fatal = FatalError(f"Unexpected error: {e}", phase=context.current_phase)
            await self._abort(context, fatal)
            raise fatal from e

    async def _run_phases(self, ctx: GenerationContext) -> Dict[str, Any]:
        gen = self.generator

        research = await self._run_phase(
            ctx, GenerationPhase.RESEARCH.value,
            lambda: gen.research(ctx.title, ctx.keywords, ctx.notes)
        )
        await self._persist(ctx, GenerationPhase.RESEARCH.value, {
            "research_data": research,
            "sources": extract_sources(research),
        })

        outline = await self._run_phase(
            ctx, GenerationPhase.OUTLINE.value,
            lambda: gen.outline(ctx.title, ctx.keywords, research)
        )
        await self._persist(ctx, GenerationPhase.OUTLINE.value, {"outline": outline})

        draft = await self._run_phase(
            ctx, GenerationPhase.WRITING.value,
            lambda: gen.write(outline, research)
        )
        content = _as_text(draft, GenerationPhase.WRITING.value)
        await self._persist(ctx, GenerationPhase.WRITING.value, {
            "draft_content": content,
            "content": content,
        })

        image = await self._run_phase(
            ctx, GenerationPhase.IMAGE_SELECTION.value,
            lambda: gen.select_image(ctx.title, ctx.keywords)
        )
        image = image if isinstance(image, dict) else {}
        await self._persist(ctx, GenerationPhase.IMAGE_SELECTION.value, {
            "cover_image_url": image.get("url"),
            "cover_image_alt": image.get("alt") or ctx.title,
        })

        quality_issues = normalize_issues(await self._run_phase(
            ctx, GenerationPhase.QUALITY_CONTROL.value,
            lambda: gen.quality_check(content)
        ))
        await self._persist(ctx, GenerationPhase.QUALITY_CONTROL.value, {
            "quality_issues": quality_issues,
        })

        validation_issues = normalize_issues(await self._run_phase(
            ctx, GenerationPhase.VALIDATING.value,
            lambda: gen.validate(content)
        ))
        ctx.plan = PhasePlan.resolve(quality_issues, validation_issues)
        await self._persist(ctx, GenerationPhase.VALIDATING.value, {
            "validation_issues": validation_issues,
            "fact_check_report": format_issues(validation_issues),
            "phase_plan": ctx.plan.to_document(),
        })
        if ctx.plan.skipped:
            logger.info(f"Article {ctx.article_id}: skipping {', '.join(ctx.plan.skipped)}")

        if ctx.plan.includes(GenerationPhase.UPDATING.value):
            issues = list(ctx.plan.issues)
            revised = await self._run_phase(
                ctx, GenerationPhase.UPDATING.value,
                lambda: gen.revise(content, issues)
            )
            content = _as_text(revised, GenerationPhase.UPDATING.value)
            await self._persist(ctx, GenerationPhase.UPDATING.value, {"content": content})

        if ctx.plan.includes(GenerationPhase.SEO_AUDIT.value):
            revised_content = content
            seo = await self._run_phase(
                ctx, GenerationPhase.SEO_AUDIT.value,
                lambda: gen.seo_audit(revised_content, ctx.keywords)
            )
            await self._persist(ctx, GenerationPhase.SEO_AUDIT.value, {
                "seo_metadata": seo if isinstance(seo, dict) else None,
            })

        ctx.current_phase = GenerationPhase.COMPLETED.value
        completed = await self.article_repo.complete_generation(ctx.article_id, {
            "content": content,
            "generation_phase": GenerationPhase.COMPLETED.value,
        })
        if completed is None:
            raise FatalError(
                f"Article {ctx.article_id} left the generating state before completion",
                phase=GenerationPhase.COMPLETED.value
            )

        logger.info(f"Generation completed for article {ctx.article_id} ({ctx.plan.kind} plan)")
        await self._notify(completed)
        return completed

    async def _run_phase(
        self,
        ctx: GenerationContext,
        phase: str,
        call: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Run one capability call with timeout and bounded in-process retries."""
        ctx.current_phase = phase
        marked = await self.article_repo.record_phase(ctx.article_id, phase)
        if marked is None:
            raise FatalError(f"Article {ctx.article_id} left the generating state", phase=phase)

        attempt = 0
        while True:
            attempt += 1
            try:
                return await asyncio.wait_for(call(), timeout=self.phase_timeout)
            except asyncio.TimeoutError:
                error = RecoverableError(
                    f"{phase} timed out after {self.phase_timeout}s", phase=phase
                )
            except RecoverableError as e:
                error = e.with_phase(phase)
            except FatalError as e:
                raise e.with_phase(phase)
            except Exception as e:
                raise FatalError(f"{phase} failed: {e}", phase=phase) from e

            if attempt >= self.phase_max_attempts:
                logger.warning(
                    f"Article {ctx.article_id}: {phase} failed after {attempt} attempts: {error}"
                )
                raise error

            delay = calculate_exponential_backoff(
                attempt - 1, self.retry_base_delay, self.retry_max_delay
            )
            logger.warning(
                f"Article {ctx.article_id}: retrying {phase} in {delay}s "
                f"(attempt {attempt + 1}/{self.phase_max_attempts}): {error}"
            )
            await asyncio.sleep(delay)

    async def _persist(self, ctx: GenerationContext, phase: str, fields: Dict[str, Any]) -> None:
        """Write phase output and progress; aborts if the article left generating."""
        progress = ctx.plan.progress_for(phase)
        updated = await self.article_repo.record_phase(ctx.article_id, phase, progress, fields)
        if updated is None:
            raise FatalError(f"Article {ctx.article_id} left the generating state", phase=phase)
        logger.info(f"Article {ctx.article_id}: {phase} complete ({progress}%)")
        await self._notify(updated)

    async def _abort(self, ctx: GenerationContext, error: PhaseError) -> None:
        message = f"{error.phase}: {error}" if error.phase else str(error)
        failed = await self.article_repo.fail_generation(ctx.article_id, message, error.phase)
        logger.error(f"Generation failed for article {ctx.article_id}: {message}")
        if failed is not None:
            await self._notify(failed)

    async def _notify(self, article: Dict[str, Any]) -> None:
        if self.on_progress is not None:
            await self.on_progress(article)

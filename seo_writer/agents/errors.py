"""Error taxonomy for the generation pipeline.

Retryable errors count against a phase's retry budget. Precondition errors
fail the phase immediately.
"""


class GenerationError(Exception):
    """Base class for every pipeline error."""

    retryable = False


class SchemaValidationFailure(GenerationError):
    """Model output did not match the expected structure."""

    retryable = True


class ProviderError(GenerationError):
    """The model or an external provider returned an error."""

    retryable = True


class ProviderTimeout(ProviderError):
    """A provider call exceeded its timeout."""


class MissingPrecondition(GenerationError):
    """Required input is absent; retrying cannot help."""


class MissingStructureTemplate(MissingPrecondition):
    pass


class MissingResearchData(MissingPrecondition):
    pass


class ArticleNotFound(MissingPrecondition):
    pass


class RunNotFound(GenerationError):
    pass


class AlreadyRunning(GenerationError):
    """An active run already exists for the article."""

    def __init__(self, article_id: str, run_id: str):
        super().__init__(f"Article {article_id} already has an active run {run_id}")
        self.article_id = article_id
        self.run_id = run_id


class RunCancelled(GenerationError):
    pass


class AssetSelectionFailure(GenerationError):
    """Cover image or screenshot selection failed; the run continues without it."""

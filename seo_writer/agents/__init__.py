from seo_writer.agents.errors import GenerationError
from seo_writer.agents.artifacts import GenerationArtifacts, PHASES

__all__ = ['GenerationError', 'GenerationArtifacts', 'PHASES']

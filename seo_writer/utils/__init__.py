from seo_writer.utils.logger import logger
from seo_writer.utils.prompts import PromptConfig, DEFAULT_PROMPTS

__all__ = ['logger', 'PromptConfig', 'DEFAULT_PROMPTS']

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional
from seo_writer.config import settings

class CustomLogger:
    _instance: Optional['CustomLogger'] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not hasattr(self, 'logger'):
            self.logger = logging.getLogger('SeoArticleWriter')
            self.logger.setLevel(getattr(logging, settings.LOG_LEVEL))

            # File handler
            log_path = Path(settings.LOG_FILE)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_path, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)

            # Console handler
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.INFO)

            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

            file_handler.setFormatter(formatter)
            console_handler.setFormatter(formatter)

            self.logger.addHandler(file_handler)
            self.logger.addHandler(console_handler)

    def info(self, message: str, **kwargs):
        self.logger.info(message, extra=kwargs, stacklevel=2)

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, extra=kwargs, stacklevel=2)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, extra=kwargs, stacklevel=2)

    def error(self, message: str, **kwargs):
        self.logger.error(message, extra=kwargs, stacklevel=2)

    def log_run(self, run_id: str, status: str, detail: Optional[str] = None):
        message = f"Run {run_id} - Status: {status}"
        if detail:
            message += f" - {detail}"
        if status == "failed":
            self.error(message)
        elif status == "cancelled":
            self.warning(message)
        else:
            self.info(message)

    def log_phase(self, run_id: str, phase: str, status: str, progress: Optional[int] = None):
        message = f"Run {run_id} - Phase: {phase} - Status: {status}"
        if progress is not None:
            message += f" - Progress: {progress}%"
        self.info(message)

    def log_api_call(self, model: str, purpose: str, tokens: Optional[int] = None):
        message = f"API Call - Model: {model} - Purpose: {purpose}"
        if tokens:
            message += f" - Tokens: {tokens}"
        self.debug(message)

    def log_section(self, section_id: str, attempt: int, score: float, approved: bool):
        self.info(
            f"Section {section_id} - Attempt: {attempt} - Score: {score:.2f} - "
            f"{'approved' if approved else 'rejected'}"
        )

    def log_cache_metrics(self, run_id: str, metrics: Dict[str, Any]):
        self.debug(f"Cache metrics - Run: {run_id} - {metrics}")

logger = CustomLogger()

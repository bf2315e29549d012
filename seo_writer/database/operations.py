import uuid
from sqlalchemy import create_engine, desc
from sqlalchemy.orm import sessionmaker, Session
from contextlib import contextmanager
from typing import List, Optional, Dict, Any, Generator
from datetime import datetime

from seo_writer.database.models import Base, Article, GenerationRun, ACTIVE_RUN_STATUSES
from seo_writer.config import settings
from seo_writer.utils.logger import logger

class DatabaseOperations:

    def __init__(self, database_path: Optional[str] = None):
        self.database_path = database_path or settings.DATABASE_PATH
        self.engine = create_engine(
            f'sqlite:///{self.database_path}',
            connect_args={"check_same_thread": False},
            echo=False
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(f"Database initialized at {self.database_path}")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database error: {str(e)}")
            raise
        finally:
            session.close()

    # Article Operations
    def create_article(self, title: str, keywords: Optional[List[str]] = None,
                       structure_template: Optional[str] = None, notes: Optional[str] = None,
                       tone_of_voice: Optional[str] = None, max_words: Optional[int] = None,
                       language_code: str = 'en', excluded_domains: Optional[List[str]] = None,
                       article_id: Optional[str] = None) -> Article:
        with self.get_session() as session:
            article = Article(
                id=article_id or str(uuid.uuid4()),
                title=title,
                keywords=list(keywords or []),
                structure_template=structure_template,
                notes=notes,
                tone_of_voice=tone_of_voice,
                max_words=max_words,
                language_code=language_code,
                excluded_domains=list(excluded_domains or []),
                tags=[],
                status='idea'
            )
            session.add(article)
            logger.info(f"Created article: {article.id}")
            return article

    def update_article(self, article_id: str, **fields: Any) -> Optional[Article]:
        with self.get_session() as session:
            article = session.query(Article).filter_by(id=article_id).first()
            if article:
                for name, value in fields.items():
                    setattr(article, name, value)
                article.updated_at = datetime.utcnow()
                logger.info(f"Updated article: {article_id} ({', '.join(fields)})")
            return article

    def get_article(self, article_id: str) -> Optional[Article]:
        with self.get_session() as session:
            return session.query(Article).filter_by(id=article_id).first()

    # Generation Run Operations
    def create_run(self, article_id: str, run_id: Optional[str] = None) -> GenerationRun:
        with self.get_session() as session:
            run = GenerationRun(
                id=run_id or str(uuid.uuid4()),
                article_id=article_id,
                status='queued',
                progress=0,
                artifacts={"errors": {}}
            )
            session.add(run)
            logger.info(f"Created generation run {run.id} for article {article_id}")
            return run

    def update_run(self, run_id: str, status: Optional[str] = None, phase: Optional[str] = None,
                   progress: Optional[int] = None, artifacts: Optional[Dict[str, Any]] = None,
                   error: Optional[str] = None, completed: bool = False) -> Optional[GenerationRun]:
        with self.get_session() as session:
            run = session.query(GenerationRun).filter_by(id=run_id).first()
            if run:
                if status is not None:
                    run.status = status
                if phase is not None:
                    run.phase = phase
                if progress is not None:
                    run.progress = max(run.progress or 0, progress)
                if artifacts is not None:
                    run.artifacts = artifacts
                if error is not None:
                    run.error = error
                if completed:
                    run.completed_at = datetime.utcnow()
                run.updated_at = datetime.utcnow()
            return run

    def reopen_run(self, run_id: str) -> Optional[GenerationRun]:
        """Put a failed run back in the queue so it can resume."""
        with self.get_session() as session:
            run = session.query(GenerationRun).filter_by(id=run_id).first()
            if run:
                run.status = 'queued'
                run.error = None
                run.completed_at = None
                run.updated_at = datetime.utcnow()
                logger.info(f"Reopened generation run {run_id}")
            return run

    def get_run(self, run_id: str) -> Optional[GenerationRun]:
        with self.get_session() as session:
            return session.query(GenerationRun).filter_by(id=run_id).first()

    def get_latest_run(self, article_id: str) -> Optional[GenerationRun]:
        with self.get_session() as session:
            return session.query(GenerationRun).filter_by(
                article_id=article_id
            ).order_by(desc(GenerationRun.started_at)).first()

    def get_active_run(self, article_id: str) -> Optional[GenerationRun]:
        with self.get_session() as session:
            return session.query(GenerationRun).filter(
                GenerationRun.article_id == article_id,
                GenerationRun.status.in_(ACTIVE_RUN_STATUSES)
            ).order_by(desc(GenerationRun.started_at)).first()

    def get_runs(self, article_id: str) -> List[GenerationRun]:
        with self.get_session() as session:
            return session.query(GenerationRun).filter_by(
                article_id=article_id
            ).order_by(GenerationRun.started_at).all()

db_ops = DatabaseOperations()

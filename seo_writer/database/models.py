from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, JSON
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime

Base = declarative_base()

ACTIVE_RUN_STATUSES = ("queued", "researching", "outlining", "writing", "quality_control", "validating")

class Article(Base):
    __tablename__ = 'articles'

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    keywords = Column(JSON, default=list)
    notes = Column(Text, nullable=True)
    status = Column(String, default='idea')  # idea, generating, generated, failed
    structure_template = Column(Text, nullable=True)
    tone_of_voice = Column(String, nullable=True)
    language_code = Column(String, default='en')
    max_words = Column(Integer, nullable=True)
    excluded_domains = Column(JSON, default=list)

    # Generated output
    content = Column(Text, nullable=True)
    slug = Column(String, nullable=True)
    meta_description = Column(String, nullable=True)
    tags = Column(JSON, default=list)
    cover_image_url = Column(String, nullable=True)
    cover_image_alt = Column(String, nullable=True)
    publish_ready = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    runs = relationship("GenerationRun", back_populates="article", cascade="all, delete-orphan")

class GenerationRun(Base):
    __tablename__ = 'generation_runs'

    id = Column(String, primary_key=True)
    article_id = Column(String, ForeignKey('articles.id'), index=True)
    status = Column(String, default='queued')  # queued, researching, outlining, writing, quality_control, validating, complete, failed
    phase = Column(String, nullable=True)
    progress = Column(Integer, default=0)
    artifacts = Column(JSON, default=dict)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    article = relationship("Article", back_populates="runs")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RUN_STATUSES

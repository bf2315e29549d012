from typing import Dict, Any, List, Optional
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from seo_writer.agents.errors import ArticleNotFound, RunNotFound
from seo_writer.agents.orchestrator import GenerationOrchestrator
from seo_writer.database.operations import db_ops
from seo_writer.utils.logger import logger
from seo_writer.api.websocket import manager

router = APIRouter()

orchestrator = GenerationOrchestrator(db_ops, on_progress=manager.send_progress)

class ArticleCreate(BaseModel):
    title: str = Field(min_length=1)
    keywords: List[str] = Field(default_factory=list)
    structure_template: Optional[str] = None
    notes: Optional[str] = None
    tone_of_voice: Optional[str] = None
    max_words: Optional[int] = Field(default=None, gt=0)
    language_code: str = "en"
    excluded_domains: List[str] = Field(default_factory=list)

def serialize_article(article) -> Dict[str, Any]:
    return {
        "id": article.id,
        "title": article.title,
        "keywords": article.keywords or [],
        "status": article.status,
        "slug": article.slug,
        "meta_description": article.meta_description,
        "tags": article.tags or [],
        "cover_image_url": article.cover_image_url,
        "cover_image_alt": article.cover_image_alt,
        "publish_ready": bool(article.publish_ready),
        "content": article.content,
    }

def serialize_run(run) -> Dict[str, Any]:
    return {
        "id": run.id,
        "article_id": run.article_id,
        "status": run.status,
        "phase": run.phase,
        "progress": run.progress or 0,
        "error": run.error,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "updated_at": run.updated_at.isoformat() if run.updated_at else None,
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
    }

@router.post("/articles")
async def create_article(request: ArticleCreate):
    """Register an article idea"""
    article = db_ops.create_article(**request.model_dump())
    return {"success": True, "article": serialize_article(article)}

@router.get("/articles/{article_id}")
async def get_article(article_id: str):
    article = db_ops.get_article(article_id)
    if not article:
        raise HTTPException(status_code=404, detail="Article not found")
    return {"success": True, "article": serialize_article(article)}

@router.post("/articles/{article_id}/generate")
async def generate_article(article_id: str):
    """Start (or resume) generation; repeated calls return the active run"""
    try:
        result = await orchestrator.start_generation(article_id)
    except ArticleNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Generation trigger error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, **result}

@router.get("/articles/{article_id}/generation-status")
async def get_generation_status(article_id: str):
    try:
        status = orchestrator.get_generation_status(article_id)
    except ArticleNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, **status}

@router.get("/runs/{run_id}")
async def get_run(run_id: str):
    try:
        run = orchestrator.status(run_id)
    except RunNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "run": serialize_run(run)}

@router.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: str):
    try:
        run = await orchestrator.cancel(run_id)
    except RunNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "run": serialize_run(run)}

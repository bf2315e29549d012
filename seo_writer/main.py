from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from seo_writer import __version__
from seo_writer.config import settings
from seo_writer.api.routes import router
from seo_writer.api.websocket import manager
from seo_writer.utils.logger import logger

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    logger.info("Starting SEO Article Writer API")
    logger.info(f"Database: {settings.DATABASE_PATH}")
    logger.info(f"Models: outline={settings.OUTLINE_MODEL}, writer={settings.WRITER_MODEL}, critic={settings.CRITIC_MODEL}")

    yield

    # Shutdown
    logger.info("Shutting down SEO Article Writer API")

app = FastAPI(
    title="SEO Article Writer",
    description="Multi-phase SEO article generation orchestrator",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api", tags=["generation"])

# WebSocket endpoint
@app.websocket("/ws/{article_id}")
async def websocket_endpoint(websocket: WebSocket, article_id: str):
    await manager.connect(websocket, article_id)
    try:
        while True:
            # Keep connection alive
            data = await websocket.receive_text()
            # Echo back for heartbeat
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        manager.disconnect(article_id)

# Health check
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": __version__,
        "database": "connected"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "seo_writer.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

from typing import Dict, Any
from fastapi import WebSocket
from seo_writer.utils.logger import logger

class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, article_id: str):
        await websocket.accept()
        self.active_connections[article_id] = websocket
        logger.info(f"WebSocket connected: {article_id}")

    def disconnect(self, article_id: str):
        if article_id in self.active_connections:
            del self.active_connections[article_id]
            logger.info(f"WebSocket disconnected: {article_id}")

    async def send_message(self, article_id: str, message: Dict[str, Any]):
        if article_id in self.active_connections:
            try:
                await self.active_connections[article_id].send_json(message)
            except Exception as e:
                # A dead socket must not fail the generation run that is reporting to it
                logger.error(f"Error sending message to {article_id}: {str(e)}")
                self.disconnect(article_id)

    async def send_progress(self, article_id: str, event: Dict[str, Any]):
        """Progress listener for the orchestrator"""
        await self.send_message(article_id, {
            "type": "generation",
            "data": event
        })

    async def send_error(self, article_id: str, error: str):
        await self.send_message(article_id, {
            "type": "error",
            "message": error
        })

manager = ConnectionManager()

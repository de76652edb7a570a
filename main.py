"""
Chat booking orchestrator entry point.

Serves ``POST /api/chat`` and ``GET /health`` with uvicorn.

Usage:
    python main.py
    PORT=9000 python main.py
"""

import logging
import os

import uvicorn

from chat_orchestrator.api.app import create_app
from chat_orchestrator.config import settings

logger = logging.getLogger(__name__)

app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting %s on port %d", settings.app_name, port)
    uvicorn.run(app, host="0.0.0.0", port=port, log_level=settings.log_level.lower())

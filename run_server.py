#!/usr/bin/env python3
"""
Assistant HTTP server launcher
Builds the runtime once and serves the FastAPI app with uvicorn
"""
import os
import sys

# Fix encoding issues on servers with ASCII locale
os.environ.setdefault('PYTHONIOENCODING', 'utf-8')

import asyncio
import logging
import uvicorn
from assistant.api import create_app
from assistant.config import settings
from assistant.runtime import build_runtime

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    logger.info("Starting assistant server...")
    logger.info(f"Python {sys.version}, encoding={sys.getdefaultencoding()}")
    logger.info(f"Base dir: {settings.base_dir}, data dir: {settings.data_dir}")

    runtime = build_runtime(settings)
    config = uvicorn.Config(
        create_app(runtime),
        host=settings.http_host,
        port=settings.http_port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    logger.info(f"HTTP API on http://{settings.http_host}:{settings.http_port}")
    await server.serve()


if __name__ == "__main__":
    asyncio.run(main())

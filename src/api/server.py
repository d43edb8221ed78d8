"""
Serve the API with hypercorn.
"""
import asyncio
import logging

from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from api.app import create_app
from services.context import AppContext

logger = logging.getLogger(__name__)


def run_server(context: AppContext, host: str, port: int, start_scheduler: bool = True) -> None:
    app = create_app(context, start_scheduler=start_scheduler)

    config = HypercornConfig()
    config.bind = [f"{host}:{port}"]
    config.accesslog = "-"
    config.errorlog = "-"

    logger.info(f"Starting Tech Intelligence API on http://{host}:{port}")
    asyncio.run(serve(app, config))

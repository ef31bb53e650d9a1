# Run from project root: uvicorn inboxpilot.main:app --reload

import logging

from fastapi import FastAPI

from inboxpilot.api.routes import router
from inboxpilot.bootstrap import Services, build_services
from inboxpilot.core.config import LOG_LEVEL
from inboxpilot.mcp.server import mcp_router

logging.basicConfig(level=LOG_LEVEL)


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(title="InboxPilot Backend")
    app.state.services = services or build_services()
    app.include_router(router)
    app.include_router(mcp_router, prefix="/mcp")
    return app


app = create_app()

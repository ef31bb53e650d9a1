"""
FastAPI dependencies: the service container and the calling owner.

Services are built once in main.create_app() and stored on app.state; routes
pull them through Depends so tests can swap in fakes.
"""

from fastapi import Header, HTTPException, Request

from inboxpilot.bootstrap import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_owner_id(x_owner_id: str | None = Header(None)) -> str:
    """Owner identity comes from the X-Owner-Id header set by the auth proxy."""
    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise HTTPException(status_code=401, detail="X-Owner-Id header is required")
    return owner_id

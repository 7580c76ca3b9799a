"""Shared FastAPI dependencies."""

from fastapi import Request


def get_engine(request: Request):
    """The CampaignEngine the app was built with."""
    return request.app.state.engine

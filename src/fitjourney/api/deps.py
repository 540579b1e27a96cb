"""FastAPI dependencies."""
from fastapi import Request

from fitjourney.container import Services


def get_services(request: Request) -> Services:
    """The Services container built by create_app()."""
    return request.app.state.services

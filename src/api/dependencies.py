"""FastAPI dependency injection helpers."""

from fastapi import Request

from src.services.coordinator import DispatchCoordinator


def get_coordinator(request: Request) -> DispatchCoordinator:
    """The process-wide coordinator built at startup."""
    return request.app.state.coordinator

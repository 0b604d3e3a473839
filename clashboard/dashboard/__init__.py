from .server import build_state, create_app

__all__ = [
    "build_state",
    "create_app",
]

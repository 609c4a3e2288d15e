from .chat import router as chat_router
from .settings import router as settings_router

__all__ = ["chat_router", "settings_router"]

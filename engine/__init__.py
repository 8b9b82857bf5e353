from .errors import (
    ProcurementError, PersistenceError, ValidationError,
    LoadTimeoutError, SessionExpiredError, is_session_error,
)
from .database import Store, SupabaseStore, Embed
from .state import AppState
from .workspace import Workspace

__all__ = [
    "ProcurementError", "PersistenceError", "ValidationError",
    "LoadTimeoutError", "SessionExpiredError", "is_session_error",
    "Store", "SupabaseStore", "Embed",
    "AppState", "Workspace",
]

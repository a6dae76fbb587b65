from coach_core.store.app_state import ACCEPTED_EXTENSIONS, AppState

__all__ = ["ACCEPTED_EXTENSIONS", "AppState"]

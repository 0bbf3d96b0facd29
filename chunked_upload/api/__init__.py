"""API module exports"""
from .endpoints import router
from .dependencies import get_current_user_id, get_coordinator, get_merge_engine

__all__ = ["router", "get_current_user_id", "get_coordinator", "get_merge_engine"]

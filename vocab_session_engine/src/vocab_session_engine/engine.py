"""
Engine composition helpers

Wire settings, storage, the remote gateway and logging into ready-to-use
SessionManager / SessionController instances.
"""

import logging
from typing import List, Optional

from vocab_session_engine.audio import AudioChannel
from vocab_session_engine.config import EngineSettings
from vocab_session_engine.logger import setup_logging
from vocab_session_engine.remote_gateway import OfflineGateway, RemoteSessionGateway, SupabaseSessionGateway
from vocab_session_engine.session_controller import SessionController
from vocab_session_engine.session_manager import SessionManager
from vocab_session_engine.session_state import Item, SessionMode
from vocab_session_engine.snapshot_store import FileSnapshotStore, InMemorySnapshotStore, SnapshotStore
from vocab_session_engine.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)


def create_snapshot_store(settings: EngineSettings) -> SnapshotStore:
    if settings.snapshot_dir:
        return FileSnapshotStore(settings.snapshot_dir, prefix=settings.storage_prefix)
    return InMemorySnapshotStore(prefix=settings.storage_prefix)


def create_gateway(
    settings: EngineSettings,
    supabase_client=None,
    user_id: Optional[str] = None,
) -> RemoteSessionGateway:
    """
    Pick the remote gateway.

    Uses Supabase when a client is given or credentials are configured;
    otherwise an offline gateway (local: sessions for user_id, else guest:).
    """
    if supabase_client is None and settings.remote_configured:
        try:
            supabase_client = get_supabase_client(settings.supabase_url, settings.supabase_key)
        except Exception as e:
            logger.warning(f"⚠️ [Engine] Supabase unavailable, running offline: {e}")
            supabase_client = None

    if supabase_client is None:
        return OfflineGateway(user_id=user_id)
    return SupabaseSessionGateway(supabase_client, user_id=user_id, mastery_streak=settings.mastery_streak)


def create_session_manager(
    settings: Optional[EngineSettings] = None,
    supabase_client=None,
    user_id: Optional[str] = None,
    configure_logging: bool = False,
) -> SessionManager:
    """
    Build a SessionManager from settings.

    Args:
        settings: Engine settings (read from the environment if None)
        supabase_client: Supabase client to use instead of the configured one
        user_id: Authenticated user id, if known
        configure_logging: Install the colored console logger

    Returns:
        SessionManager
    """
    settings = settings or EngineSettings.from_env()
    if configure_logging:
        setup_logging(level=settings.log_level_value, use_colors=settings.log_colors)

    store = create_snapshot_store(settings)
    gateway = create_gateway(settings, supabase_client=supabase_client, user_id=user_id)
    logger.info(f"⚙️ [Engine] Using {type(store).__name__} with {type(gateway).__name__}")
    return SessionManager(store, gateway, parked_retention_days=settings.parked_retention_days)


def create_session_controller(
    items: List[Item],
    mode: SessionMode,
    lesson_id: str,
    manager: Optional[SessionManager] = None,
    audio: Optional[AudioChannel] = None,
    settings: Optional[EngineSettings] = None,
) -> SessionController:
    """Build a SessionController, creating a manager from settings if none is given."""
    settings = settings or EngineSettings.from_env()
    manager = manager or create_session_manager(settings)
    return SessionController(items, mode, lesson_id, manager, audio=audio, settings=settings)

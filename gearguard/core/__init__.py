"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    engine,
    get_session,
    get_session_context,
    init_db,
    set_service_context,
    set_tenant_context,
    set_user_context,
)
from .dependencies import (
    AdminDep,
    CurrentUser,
    CurrentUserDep,
    ManagerDep,
    OrgContextDep,
    SessionDep,
    authenticate,
    get_current_user,
    require_admin,
    require_manager,
    require_org_context,
)
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    "set_tenant_context",
    "set_service_context",
    "set_user_context",
    # Dependencies
    "CurrentUser",
    "authenticate",
    "get_current_user",
    "require_org_context",
    "require_manager",
    "require_admin",
    "CurrentUserDep",
    "OrgContextDep",
    "ManagerDep",
    "AdminDep",
    "SessionDep",
    # Security
    "hash_password",
    "verify_password",
    "create_access_token",
    "create_refresh_token",
    "decode_token",
]

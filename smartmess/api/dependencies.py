"""Shared API auth dependencies."""
from smartmess.core.security import get_current_user, require_roles

require_owner = require_roles("mess-owner", "admin")
require_admin = require_roles("admin")
require_member = require_roles("user", "mess-owner", "admin")

__all__ = ["get_current_user", "require_roles", "require_owner", "require_admin", "require_member"]

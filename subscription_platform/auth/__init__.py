"""Authentication / authorization helpers.

Auth is intentionally lightweight:

- Users table (email/password hash + role)
- JWT access tokens

The API supports both:

- `Authorization: Bearer <token>` (useful for scripts and the checkout client)
- A secure httpOnly cookie (set by `/auth/login` and `/auth/register`)
"""

from .deps import get_current_user, require_admin
from .crud import bootstrap_admin_if_needed, create_user

__all__ = [
    "get_current_user",
    "require_admin",
    "bootstrap_admin_if_needed",
    "create_user",
]

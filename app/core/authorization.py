from typing import Iterable, Optional

from app.core.config import settings
from app.core.logging import logger
from app.schemas.auth import AuthenticatedUser
from app.utils.sanitizer import sanitize_email


class AuthorizationPolicy:
    """
    Decides who counts as a platform admin.

    One instance is injected at the API boundary (see app.api.v1.auth) so the
    admin allow list lives in configuration instead of being re-declared in
    every handler.
    """

    def __init__(self, admin_emails: Iterable[str] = ()):
        emails = set()
        for email in admin_emails:
            try:
                emails.add(sanitize_email(email))
            except ValueError:
                logger.warning("invalid_admin_email_ignored", email=email)
        self._admin_emails = frozenset(emails)

    @classmethod
    def from_settings(cls) -> "AuthorizationPolicy":
        return cls(settings.ADMIN_EMAILS)

    def is_admin(self, user: Optional[AuthenticatedUser]) -> bool:
        """Admins are either allow-listed by email or carry app_metadata.role == 'admin'."""
        if user is None:
            return False
        if user.role == "admin":
            return True
        return bool(user.email) and user.email.lower() in self._admin_emails


authorization_policy = AuthorizationPolicy.from_settings()

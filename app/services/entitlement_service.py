import math
from datetime import UTC, datetime, timedelta
from typing import Callable, List, Optional, Tuple
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.errors import DenialReason, EntitlementLookupError, Forbidden
from app.core.logging import logger
from app.models.database import Institution, InstitutionMembership
from app.schemas.entitlement import Denied, Entitlement, EntitlementSource, Granted
from app.services.database_service import DatabaseService

_DAY = timedelta(days=1)

# Institution roles that never need an institutional subscription
_PRIVILEGED_ROLES = {"admin", "subadmin"}


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta / _DAY)


def evaluate(
    candidates: List[Tuple[EntitlementSource, Optional[datetime]]],
    now: datetime,
    warning_days: Optional[int] = None,
) -> Entitlement:
    """
    Turn the sources found for a user into a decision.

    Candidates are in precedence order. The first one that is not expired
    grants access; a None expiry never expires. If all are expired the
    highest precedence one is reported.
    """
    if warning_days is None:
        warning_days = settings.RENEWAL_WARNING_DAYS

    if not candidates:
        return Denied(reason=DenialReason.NO_SUBSCRIPTION)

    for source, expires_at in candidates:
        if expires_at is None:
            return Granted(source=source)
        expires_at = as_utc(expires_at)
        if expires_at >= now:
            days_remaining = _ceil_days(expires_at - now)
            return Granted(
                source=source,
                expires_at=expires_at,
                days_remaining=days_remaining,
                renewal_warning=days_remaining <= warning_days,
            )

    source, expires_at = candidates[0]
    expires_at = as_utc(expires_at)
    return Denied(
        reason=DenialReason.EXPIRED,
        source=source,
        expires_at=expires_at,
        days_expired=_ceil_days(now - expires_at),
        action_required="renew",
    )


class EntitlementService:
    """
    Decides whether a user may invoke an assistant.
    Read-only: it never writes to the store.
    """

    def __init__(self, db: DatabaseService, clock: Callable[[], datetime] = lambda: datetime.now(UTC)):
        self.db = db
        self._clock = clock

    async def check(self, user_id: str, assistant_id: str) -> Entitlement:
        """Individual subscription first, then packages covering the assistant.

        Raises:
            EntitlementLookupError: If the store could not be queried
        """
        now = self._clock()
        try:
            candidates: List[Tuple[EntitlementSource, Optional[datetime]]] = []

            subscription = await self.db.get_active_subscription(user_id, assistant_id)
            if subscription is not None:
                candidates.append((EntitlementSource.INDIVIDUAL, subscription.expires_at))

            for package in await self.db.get_active_packages(user_id):
                if assistant_id in (package.assistant_ids or []):
                    candidates.append((EntitlementSource.PACKAGE, package.expires_at))
        except SQLAlchemyError as e:
            logger.error("entitlement_lookup_failed", user_id=user_id, assistant_id=assistant_id, error=str(e))
            raise EntitlementLookupError() from e

        decision = evaluate(candidates, now)
        self._log(decision, user_id, assistant_id)
        return decision

    async def check_institution(
        self,
        user_id: str,
        institution: Institution,
        membership: Optional[InstitutionMembership] = None,
    ) -> Entitlement:
        """Institution flow: approved membership, then the institution-level subscription.

        Admins and subadmins bypass the subscription and are granted without expiry.

        Raises:
            EntitlementLookupError: If the store could not be queried
        """
        now = self._clock()
        try:
            if membership is None:
                membership = await self.db.get_membership(institution.id, user_id)
            if membership is None:
                decision: Entitlement = Denied(reason=DenialReason.NO_SUBSCRIPTION)
            elif not membership.is_active:
                decision = Denied(reason=DenialReason.MEMBERSHIP_INACTIVE)
            elif membership.is_admin or membership.role in _PRIVILEGED_ROLES:
                decision = Granted(source=EntitlementSource.INSTITUTION)
            else:
                subscription = await self.db.get_institution_subscription(institution.id, user_id)
                if subscription is None or subscription.status not in ("active", "expired"):
                    decision = Denied(reason=DenialReason.NO_SUBSCRIPTION)
                elif subscription.status == "expired":
                    # Billing already closed it, whatever the date says
                    expires_at = as_utc(subscription.expires_at) if subscription.expires_at else None
                    decision = Denied(
                        reason=DenialReason.EXPIRED,
                        source=EntitlementSource.INSTITUTION,
                        expires_at=expires_at,
                        days_expired=_ceil_days(now - expires_at) if expires_at and expires_at < now else None,
                        action_required="renew",
                    )
                else:
                    decision = evaluate([(EntitlementSource.INSTITUTION, subscription.expires_at)], now)
        except SQLAlchemyError as e:
            logger.error("institution_entitlement_lookup_failed", user_id=user_id, institution_id=institution.id, error=str(e))
            raise EntitlementLookupError() from e

        self._log(decision, user_id, institution_slug=institution.slug)
        return decision

    @staticmethod
    def _log(decision: Entitlement, user_id: str, assistant_id: Optional[str] = None, institution_slug: Optional[str] = None) -> None:
        if isinstance(decision, Granted):
            logger.debug(
                "entitlement_granted",
                user_id=user_id,
                assistant_id=assistant_id,
                institution_slug=institution_slug,
                source=decision.source.value,
                days_remaining=decision.days_remaining,
                renewal_warning=decision.renewal_warning,
            )
        else:
            logger.info(
                "entitlement_denied",
                user_id=user_id,
                assistant_id=assistant_id,
                institution_slug=institution_slug,
                reason=decision.reason.value,
                days_expired=decision.days_expired,
            )


_DENIAL_MESSAGES = {
    DenialReason.NO_SUBSCRIPTION: "No active subscription for this assistant",
    DenialReason.EXPIRED: "Subscription expired",
    DenialReason.MEMBERSHIP_INACTIVE: "Institution membership is not active",
}


def require_granted(decision: Entitlement, assistant_id: Optional[str] = None) -> Granted:
    """Return the grant or raise Forbidden carrying the denial details.

    Raises:
        Forbidden: If the decision is a denial
    """
    if isinstance(decision, Granted):
        return decision
    raise Forbidden(
        _DENIAL_MESSAGES[decision.reason],
        reason=decision.reason,
        assistant_id=assistant_id,
        expires_at=decision.expires_at.isoformat() if decision.expires_at else None,
        days_expired=decision.days_expired,
        action_required=decision.action_required,
    )

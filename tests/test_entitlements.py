"""Tests for the entitlement check."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import DenialReason, EntitlementLookupError, Forbidden
from app.models.database import InstitutionMembership, InstitutionSubscription, Subscription
from app.schemas.entitlement import Denied, EntitlementSource, Granted
from app.services.entitlement_service import EntitlementService, evaluate, require_granted
from conftest import USER_ID, add, package_for

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


def service(db_service, now=NOW):
    return EntitlementService(db_service, clock=lambda: now)


class TestEvaluate:
    def test_nothing_found(self):
        decision = evaluate([], NOW)
        assert isinstance(decision, Denied)
        assert decision.reason == DenialReason.NO_SUBSCRIPTION
        assert decision.days_expired is None

    def test_expired_one_second_ago_counts_as_one_day(self):
        decision = evaluate([(EntitlementSource.INDIVIDUAL, NOW - timedelta(seconds=1))], NOW)
        assert isinstance(decision, Denied)
        assert decision.reason == DenialReason.EXPIRED
        assert decision.days_expired == 1
        assert decision.action_required == "renew"

    def test_expiring_in_one_second_is_granted_with_warning(self):
        decision = evaluate([(EntitlementSource.INDIVIDUAL, NOW + timedelta(seconds=1))], NOW)
        assert isinstance(decision, Granted)
        assert decision.days_remaining == 1
        assert decision.renewal_warning is True

    def test_no_warning_beyond_three_days(self):
        decision = evaluate([(EntitlementSource.PACKAGE, NOW + timedelta(days=3, hours=1))], NOW)
        assert decision.days_remaining == 4
        assert decision.renewal_warning is False

    def test_warning_at_exactly_three_days(self):
        decision = evaluate([(EntitlementSource.PACKAGE, NOW + timedelta(days=3))], NOW)
        assert decision.days_remaining == 3
        assert decision.renewal_warning is True

    def test_naive_expiry_is_treated_as_utc(self):
        decision = evaluate([(EntitlementSource.INDIVIDUAL, datetime(2024, 3, 20, 12, 0))], NOW)
        assert isinstance(decision, Granted)
        assert decision.days_remaining == 5

    def test_first_unexpired_source_wins(self):
        decision = evaluate(
            [
                (EntitlementSource.INDIVIDUAL, NOW - timedelta(days=2)),
                (EntitlementSource.PACKAGE, NOW + timedelta(days=10)),
            ],
            NOW,
        )
        assert isinstance(decision, Granted)
        assert decision.source == EntitlementSource.PACKAGE

    def test_all_expired_reports_highest_precedence(self):
        individual_expiry = NOW - timedelta(days=2)
        decision = evaluate(
            [
                (EntitlementSource.INDIVIDUAL, individual_expiry),
                (EntitlementSource.PACKAGE, NOW - timedelta(days=20)),
            ],
            NOW,
        )
        assert decision.source == EntitlementSource.INDIVIDUAL
        assert decision.expires_at == individual_expiry
        assert decision.days_expired == 2

    def test_none_expiry_never_expires(self):
        decision = evaluate([(EntitlementSource.INSTITUTION, None)], NOW)
        assert isinstance(decision, Granted)
        assert decision.expires_at is None
        assert decision.days_remaining is None


class TestIndividualAndPackage:
    def test_individual_subscription_is_reported_before_package(self, session, db_service, assistant):
        individual_expiry = NOW + timedelta(days=10)
        add(session, Subscription(user_id=USER_ID, assistant_id=assistant.id, expires_at=individual_expiry))
        package_for(session, [assistant.id], NOW + timedelta(days=90))

        decision = asyncio.run(service(db_service).check(USER_ID, assistant.id))

        assert isinstance(decision, Granted)
        assert decision.source == EntitlementSource.INDIVIDUAL
        assert decision.expires_at == individual_expiry
        assert decision.days_remaining == 10

    def test_package_covering_the_assistant_grants(self, session, db_service, assistant):
        package_for(session, ["outro", assistant.id], NOW + timedelta(days=40))

        decision = asyncio.run(service(db_service).check(USER_ID, assistant.id))

        assert isinstance(decision, Granted)
        assert decision.source == EntitlementSource.PACKAGE

    def test_package_for_other_assistants_does_not_grant(self, session, db_service, assistant):
        package_for(session, ["outro"], NOW + timedelta(days=40))

        decision = asyncio.run(service(db_service).check(USER_ID, assistant.id))

        assert isinstance(decision, Denied)
        assert decision.reason == DenialReason.NO_SUBSCRIPTION

    def test_cancelled_subscription_is_ignored(self, session, db_service, assistant):
        add(session, Subscription(
            user_id=USER_ID, assistant_id=assistant.id, status="cancelled", expires_at=NOW + timedelta(days=10),
        ))

        decision = asyncio.run(service(db_service).check(USER_ID, assistant.id))

        assert decision.reason == DenialReason.NO_SUBSCRIPTION

    def test_other_users_subscription_does_not_leak(self, session, db_service, assistant):
        add(session, Subscription(user_id="someone-else", assistant_id=assistant.id, expires_at=NOW + timedelta(days=10)))

        decision = asyncio.run(service(db_service).check(USER_ID, assistant.id))

        assert isinstance(decision, Denied)

    def test_expired_on_new_year_checked_nine_days_later(self, session, db_service, assistant):
        add(session, Subscription(user_id=USER_ID, assistant_id=assistant.id, expires_at=datetime(2024, 1, 1, tzinfo=UTC)))

        decision = asyncio.run(service(db_service, now=datetime(2024, 1, 10, tzinfo=UTC)).check(USER_ID, assistant.id))

        assert isinstance(decision, Denied)
        assert decision.reason == DenialReason.EXPIRED
        assert decision.days_expired == 9
        assert decision.action_required == "renew"

    def test_expiry_boundary_through_the_store(self, session, db_service, assistant):
        add(session, Subscription(user_id=USER_ID, assistant_id=assistant.id, expires_at=NOW - timedelta(seconds=1)))
        assert asyncio.run(service(db_service).check(USER_ID, assistant.id)).days_expired == 1

    def test_store_failure_is_not_a_denial(self, db_service):
        class BrokenStore:
            async def get_active_subscription(self, user_id, assistant_id):
                raise OperationalError("SELECT", {}, Exception("connection refused"))

        with pytest.raises(EntitlementLookupError) as exc_info:
            asyncio.run(EntitlementService(BrokenStore(), clock=lambda: NOW).check(USER_ID, "psicanalise"))
        assert exc_info.value.status_code == 500
        assert exc_info.value.error_code == "subscription_check_failed"


class TestInstitution:
    def test_active_member_with_subscription(self, db_service, institution, membership, institution_subscription):
        decision = asyncio.run(EntitlementService(db_service).check_institution(USER_ID, institution))
        assert isinstance(decision, Granted)
        assert decision.source == EntitlementSource.INSTITUTION
        assert decision.days_remaining in (60, 61)

    def test_not_a_member(self, db_service, institution):
        decision = asyncio.run(service(db_service).check_institution(USER_ID, institution))
        assert decision.reason == DenialReason.NO_SUBSCRIPTION

    def test_pending_membership(self, session, db_service, institution, institution_subscription):
        add(session, InstitutionMembership(institution_id=institution.id, user_id=USER_ID, is_active=False))
        decision = asyncio.run(service(db_service).check_institution(USER_ID, institution))
        assert decision.reason == DenialReason.MEMBERSHIP_INACTIVE

    @pytest.mark.parametrize("role,is_admin", [("admin", False), ("subadmin", False), ("user", True)])
    def test_admins_bypass_the_subscription(self, session, db_service, institution, role, is_admin):
        add(session, InstitutionMembership(
            institution_id=institution.id, user_id=USER_ID, role=role, is_admin=is_admin, is_active=True,
        ))
        decision = asyncio.run(service(db_service).check_institution(USER_ID, institution))
        assert isinstance(decision, Granted)
        assert decision.expires_at is None

    def test_member_without_subscription(self, db_service, institution, membership):
        decision = asyncio.run(service(db_service).check_institution(USER_ID, institution))
        assert decision.reason == DenialReason.NO_SUBSCRIPTION

    def test_subscription_past_its_date(self, session, db_service, institution, membership):
        add(session, InstitutionSubscription(
            institution_id=institution.id, user_id=USER_ID, expires_at=NOW - timedelta(days=4),
        ))
        decision = asyncio.run(service(db_service).check_institution(USER_ID, institution))
        assert decision.reason == DenialReason.EXPIRED
        assert decision.days_expired == 4

    def test_subscription_marked_expired_by_billing(self, session, db_service, institution, membership):
        add(session, InstitutionSubscription(
            institution_id=institution.id, user_id=USER_ID, status="expired", expires_at=NOW + timedelta(days=4),
        ))
        decision = asyncio.run(service(db_service).check_institution(USER_ID, institution))
        assert decision.reason == DenialReason.EXPIRED
        assert decision.days_expired is None


class TestRequireGranted:
    def test_grant_passes_through(self):
        grant = Granted(source=EntitlementSource.INDIVIDUAL)
        assert require_granted(grant) is grant

    def test_denial_becomes_forbidden(self):
        denial = evaluate([(EntitlementSource.INDIVIDUAL, NOW - timedelta(days=3))], NOW)
        with pytest.raises(Forbidden) as exc_info:
            require_granted(denial, assistant_id="psicanalise")
        body = exc_info.value.to_dict()
        assert body["error_code"] == "expired"
        assert body["assistant_id"] == "psicanalise"
        assert body["days_expired"] == 3
        assert body["action_required"] == "renew"

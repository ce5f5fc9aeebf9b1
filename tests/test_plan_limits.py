from datetime import datetime, timedelta

import pytest

from agenda.errors import InvalidArgumentError, ResourceExhaustedError
from agenda.models import Professional
from agenda.plan_limits import (
    check_plan_limits,
    expire_trials,
    get_current_usage,
    get_plan_limits,
    get_usage_stats,
    record_usage,
)

NOW = datetime(2026, 3, 10, 12, 0, 0)


def usage_of(amount):
    return lambda db, professional_id, resource_type, now: amount


class TestPlanLimits:
    def test_unknown_plan_gets_trial_limits(self):
        assert get_plan_limits("gold") == get_plan_limits("trial")
        assert get_plan_limits(None)["apiCalls"] == 1000

    def test_under_limit_passes(self, db, professional):
        check_plan_limits(db, professional.id, "apiCalls", usage_provider=usage_of(999), now=NOW)

    def test_at_limit_is_rejected_and_reported(self, db, professional):
        violations = []
        with pytest.raises(ResourceExhaustedError) as exc:
            check_plan_limits(
                db,
                professional.id,
                "apiCalls",
                usage_provider=usage_of(1000),
                violation_sink=violations.append,
                now=NOW,
            )
        assert exc.value.details == {"resourceType": "apiCalls", "currentUsage": 1000, "limit": 1000}
        assert violations[0]["type"] == "planLimit"
        assert violations[0]["action"] == "block"
        assert violations[0]["metadata"]["plan"] == "trial"

    def test_unlimited_plan_never_reads_usage(self, db, make_professional):
        professional = make_professional(plan="enterprise")

        def must_not_be_called(*args):
            raise AssertionError("usage looked up for an unlimited plan")

        check_plan_limits(db, professional.id, "storage", usage_provider=must_not_be_called, now=NOW)

    def test_usage_lookup_failure_lets_request_through(self, db, professional):
        def broken(*args):
            raise RuntimeError("usage store unavailable")

        check_plan_limits(db, professional.id, "apiCalls", usage_provider=broken, now=NOW)

    def test_unknown_resource_type_lets_request_through(self, db, professional):
        check_plan_limits(db, professional.id, "printerInk", now=NOW)


class TestUsage:
    def test_usage_accumulates_per_month(self, db, professional):
        record_usage(db, professional.id, "apiCalls", now=NOW)
        record_usage(db, professional.id, "apiCalls", amount=4, now=NOW)
        record_usage(db, professional.id, "apiCalls", now=datetime(2026, 4, 1, 0, 0))

        assert get_current_usage(db, professional.id, "apiCalls", NOW) == 5
        assert get_current_usage(db, professional.id, "apiCalls", datetime(2026, 4, 20)) == 1

    def test_recorded_usage_counts_against_limit(self, db, professional):
        record_usage(db, professional.id, "bandwidth", now=NOW)
        with pytest.raises(ResourceExhaustedError):
            check_plan_limits(db, professional.id, "bandwidth", now=NOW)

    def test_unknown_resource_type_is_rejected(self, db, professional):
        with pytest.raises(InvalidArgumentError):
            record_usage(db, professional.id, "printerInk", now=NOW)

    def test_usage_stats(self, db, make_professional):
        professional = make_professional(plan="professional")
        record_usage(db, professional.id, "storage", amount=250, now=NOW)

        stats = get_usage_stats(db, professional, now=NOW)

        assert stats["plan"] == "professional"
        assert stats["period_start"] == datetime(2026, 3, 1)
        assert stats["resources"]["storage"] == {
            "used": 250,
            "limit": 1000,
            "unlimited": False,
            "remaining": 750,
        }


class TestTrialExpiry:
    def test_ended_trials_expire(self, db, make_professional):
        ended = make_professional(trial_ends_at=NOW - timedelta(hours=1))
        ending = make_professional(name="Carla", trial_ends_at=NOW + timedelta(hours=6))
        later = make_professional(name="Dora", trial_ends_at=NOW + timedelta(days=5))

        summary = expire_trials(db, now=NOW)

        assert summary == {"expired": 1, "ending_soon": 1}
        statuses = {p.id: p.subscription_status for p in db.query(Professional).all()}
        assert statuses == {ended.id: "expired", ending.id: "trialing", later.id: "trialing"}

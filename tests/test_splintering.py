"""
Splintering Detector Tests — threshold arithmetic, look-back window,
active-spend filter, requester/department matching, config defaults,
window statistics.
"""

from decimal import Decimal

import pytest

from portal.services.splintering import check_splintering, get_splintering_stats


class TestThreshold:

    def test_no_prior_requests(self, make_user):
        user = make_user()
        result = check_splintering(requester_id=user.id, total=Decimal("1000"))
        assert result.sum_prior == Decimal("0")
        assert result.combined == Decimal("1000")
        assert result.flagged is False
        assert result.matches == []

    def test_combined_over_threshold_is_flagged(self, make_user, make_request):
        user = make_user()
        make_request(requester_id=user.id, total="220000", status="SUBMITTED")

        result = check_splintering(
            requester_id=user.id, total=Decimal("50000"), threshold=Decimal("250000"),
        )
        assert result.sum_prior == Decimal("220000")
        assert result.combined == Decimal("270000")
        assert result.flagged is True
        assert len(result.matches) == 1

    def test_combined_under_threshold_not_flagged(self, make_user, make_request):
        user = make_user()
        make_request(requester_id=user.id, total="20000", status="FINANCE_REVIEW")

        result = check_splintering(
            requester_id=user.id, total=Decimal("30000"), threshold=Decimal("100000"),
        )
        assert result.combined == Decimal("50000")
        assert result.flagged is False

    def test_exactly_at_threshold_is_flagged(self, make_user, make_request):
        user = make_user()
        make_request(requester_id=user.id, total="150000", status="SUBMITTED")

        result = check_splintering(requester_id=user.id, total=100000, threshold=250000)
        assert result.combined == Decimal("250000")
        assert result.flagged is True


class TestCandidateSelection:

    def test_requests_outside_window_ignored(self, make_user, make_request):
        user = make_user()
        make_request(requester_id=user.id, total="200000", status="SUBMITTED", days_ago=31)
        make_request(requester_id=user.id, total="10000", status="SUBMITTED", days_ago=29)

        result = check_splintering(requester_id=user.id, total=0, window_days=30)
        assert result.sum_prior == Decimal("10000")

    @pytest.mark.parametrize("status", ["DRAFT", "DEPARTMENT_RETURNED", "FINANCE_RETURNED",
                                        "CLOSED", "REJECTED"])
    def test_inactive_statuses_ignored(self, make_user, make_request, status):
        user = make_user()
        make_request(requester_id=user.id, total="500000", status=status)

        result = check_splintering(requester_id=user.id, total=1)
        assert result.sum_prior == Decimal("0")
        assert result.flagged is False

    def test_department_match_counts_other_requesters(self, make_user, make_request, department):
        alice = make_user(department_id=department.id)
        bob = make_user(department_id=department.id)
        make_request(requester_id=bob.id, department_id=department.id,
                     total="240000", status="PROCUREMENT_REVIEW")

        result = check_splintering(
            requester_id=alice.id, department_id=department.id, total=20000,
        )
        assert result.flagged is True
        assert result.matches[0].requester_id == bob.id

    def test_other_requester_other_department_ignored(self, make_user, make_request):
        alice = make_user()
        bob = make_user()
        make_request(requester_id=bob.id, total="240000", status="SUBMITTED")

        result = check_splintering(requester_id=alice.id, total=20000)
        assert result.sum_prior == Decimal("0")

    def test_exclude_request_id(self, make_user, make_request):
        user = make_user()
        own = make_request(requester_id=user.id, total="300000", status="SUBMITTED")

        result = check_splintering(
            requester_id=user.id, total=own.total_estimated, exclude_request_id=own.id,
        )
        assert result.sum_prior == Decimal("0")
        assert result.combined == Decimal("300000")


class TestDefaults:

    def test_defaults_come_from_config(self, app):
        result = check_splintering(total=0)
        assert result.window_days == app.config["SPLINTER_WINDOW_DAYS"] == 30
        assert result.threshold == Decimal("250000")

    def test_config_threshold_override(self, app, monkeypatch, make_user, make_request):
        monkeypatch.setitem(app.config, "SPLINTER_THRESHOLD_JMD", "50000")
        user = make_user()
        make_request(requester_id=user.id, total="40000", status="SUBMITTED")

        result = check_splintering(requester_id=user.id, total=10000)
        assert result.threshold == Decimal("50000")
        assert result.flagged is True

    def test_result_serialises_decimals_as_strings(self, make_user, make_request):
        user = make_user()
        make_request(requester_id=user.id, total="1250.50", status="SUBMITTED")

        d = check_splintering(requester_id=user.id, total="100").to_dict()
        assert d["sum_prior"] == "1250.50"
        assert d["combined"] == "1350.50"
        assert d["matches"][0]["amount"] == "1250.50"


class TestWindowStats:

    @pytest.fixture()
    def busy_department(self, department, make_user, make_request):
        frequent = make_user(full_name="Fran Frequent", department_id=department.id)
        occasional = make_user(full_name="Olly Occasional", department_id=department.id)
        for _ in range(4):
            make_request(requester_id=frequent.id, department_id=department.id,
                         total="10000", status="SUBMITTED")
        make_request(requester_id=occasional.id, department_id=department.id,
                     total="5000", status="FINANCE_REVIEW")
        # Neither a draft nor an old request counts.
        make_request(requester_id=frequent.id, department_id=department.id,
                     total="99999", status="DRAFT")
        make_request(requester_id=frequent.id, department_id=department.id,
                     total="99999", status="SUBMITTED", days_ago=45)
        return department, frequent, occasional

    def test_high_frequency_groups(self, busy_department):
        department, frequent, _ = busy_department

        stats = get_splintering_stats(30)

        assert stats["window_days"] == 30
        assert stats["total_requests"] == 5
        assert Decimal(stats["total_value"]) == Decimal("45000")

        [dept] = stats["high_frequency_departments"]
        assert dept["id"] == department.id
        assert dept["name"] == "Public Works"
        assert dept["request_count"] == 5
        assert Decimal(dept["total_value"]) == Decimal("45000")

        [user] = stats["high_frequency_users"]
        assert user["id"] == frequent.id
        assert user["name"] == "Fran Frequent"
        assert user["request_count"] == 4
        assert Decimal(user["total_value"]) == Decimal("40000")

    def test_thresholds_are_inclusive_and_adjustable(self, busy_department):
        stats = get_splintering_stats(30, min_department_requests=6, min_user_requests=1)
        assert stats["high_frequency_departments"] == []
        assert len(stats["high_frequency_users"]) == 2
        assert stats["thresholds"] == {"department_requests": 6, "user_requests": 1}

    def test_empty_window(self):
        stats = get_splintering_stats()
        assert stats["window_days"] == 30
        assert stats["total_requests"] == 0
        assert Decimal(stats["total_value"]) == Decimal("0")
        assert stats["high_frequency_departments"] == []
        assert stats["high_frequency_users"] == []

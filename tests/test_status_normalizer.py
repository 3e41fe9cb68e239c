"""
Status Normalizer Tests:
  - Legacy remaps, NULL/empty and unknown values → canonical
  - Idempotence and the fixed eight-statement shape
  - Failure isolation (None, caller transaction intact)
  - with_status_repair: one repair, one retry, then hard failure
  - Heal-on-read through the lifecycle loader
"""

from datetime import datetime, timezone
from unittest import mock

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from portal.core.exceptions import StatusCorruptionError
from portal.models import db
from portal.models.audit import AuditLog
from portal.models.request import REQUEST_STATUSES, Request
from portal.services import status_normalizer
from portal.services.request_lifecycle import load_request
from portal.services.status_normalizer import repair_statuses, with_status_repair

_seq = iter(range(1, 10_000))


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _insert_raw(status):
    """Insert a request row bypassing the ORM, so any status string lands in storage."""
    now = datetime.now(timezone.utc)
    result = db.session.execute(
        Request.__table__.insert().values(
            reference=f"PR-RAW-{next(_seq):04d}",
            title="Legacy row",
            total_estimated=0,
            currency="JMD",
            status=status,
            created_at=now,
            updated_at=now,
        )
    )
    return result.inserted_primary_key[0]


def _stored_status(request_id):
    # Raw SQL: the Enum column type would refuse legacy values on read.
    return db.session.execute(
        text("SELECT status FROM requests WHERE id = :id"), {"id": request_id}
    ).scalar_one()


# ═══════════════════════════════════════════════════════════════════════════
# TestRepairStatuses
# ═══════════════════════════════════════════════════════════════════════════


class TestRepairStatuses:

    @pytest.mark.parametrize("legacy, expected", [
        ("PENDING", "SUBMITTED"),
        ("UNDER_REVIEW", "SUBMITTED"),
        ("DEPT_REVIEW", "DEPARTMENT_REVIEW"),
        ("DEPARTMENT_APPROVAL", "DEPARTMENT_REVIEW"),
        ("DEPARTMENT_REVIEWING", "DEPARTMENT_REVIEW"),
        ("BUDGET_REVIEW", "BUDGET_MANAGER_REVIEW"),
        ("BUDGET_OFFICER_REVIEW", "BUDGET_MANAGER_REVIEW"),
        ("EXECUTIVE_APPROVED", "EXECUTIVE_REVIEW"),
        ("EXECUTIVE_APPROVAL", "EXECUTIVE_REVIEW"),
        ("APPROVED", "FINANCE_APPROVED"),
        ("PROCUREMENT", "PROCUREMENT_REVIEW"),
        ("PROCUREMENT_APPROVED", "PROCUREMENT_REVIEW"),
        ("PROCUREMENT_APPROVAL", "PROCUREMENT_REVIEW"),
    ])
    def test_legacy_value_remapped(self, legacy, expected):
        rid = _insert_raw(legacy)
        assert repair_statuses() == 1
        assert _stored_status(rid) == expected

    def test_null_and_empty_become_draft(self):
        null_id = _insert_raw(None)
        empty_id = _insert_raw("")
        assert repair_statuses() == 2
        assert _stored_status(null_id) == "DRAFT"
        assert _stored_status(empty_id) == "DRAFT"

    def test_unknown_value_demoted_to_draft(self):
        rid = _insert_raw("ON_HOLD_FOREVER")
        assert repair_statuses() == 1
        assert _stored_status(rid) == "DRAFT"

    def test_canonical_rows_untouched(self):
        ids = {status: _insert_raw(status) for status in REQUEST_STATUSES}
        assert repair_statuses() == 0
        for status, rid in ids.items():
            assert _stored_status(rid) == status

    def test_second_run_is_noop(self):
        _insert_raw("PENDING")
        _insert_raw("APPROVED")
        _insert_raw(None)
        assert repair_statuses() == 3
        assert repair_statuses() == 0

    def test_runs_exactly_eight_statements(self):
        _insert_raw("PENDING")
        with mock.patch.object(db.session, "execute", wraps=db.session.execute) as spy:
            repair_statuses()
        assert spy.call_count == 8

    def test_eight_statements_even_when_clean(self):
        with mock.patch.object(db.session, "execute", wraps=db.session.execute) as spy:
            assert repair_statuses() == 0
        assert spy.call_count == 8

    def test_repair_is_audited(self):
        _insert_raw("PENDING")
        _insert_raw("BUDGET_REVIEW")
        repair_statuses()
        log = AuditLog.query.filter_by(action="request.statuses_repaired").one()
        assert log.diff == {"rows": 2}

    def test_clean_run_writes_no_audit(self):
        repair_statuses()
        assert AuditLog.query.count() == 0

    def test_failure_returns_none(self):
        boom = OperationalError("UPDATE requests", {}, Exception("db down"))
        with mock.patch.object(db.session, "execute", side_effect=boom):
            assert repair_statuses() is None

    def test_failure_leaves_caller_transaction_usable(self):
        rid = _insert_raw("PENDING")
        boom = OperationalError("UPDATE requests", {}, Exception("db down"))
        with mock.patch.object(db.session, "execute", side_effect=boom):
            assert repair_statuses() is None
        # Still usable, and the row is still legacy.
        assert _stored_status(rid) == "PENDING"


# ═══════════════════════════════════════════════════════════════════════════
# TestWithStatusRepair
# ═══════════════════════════════════════════════════════════════════════════


class TestWithStatusRepair:

    def test_success_needs_no_repair(self):
        with mock.patch.object(status_normalizer, "repair_statuses") as repair:
            assert with_status_repair(lambda: "ok") == "ok"
        repair.assert_not_called()

    def test_repairs_once_and_retries_once(self):
        loader = mock.Mock(side_effect=[LookupError("bad status"), "loaded"])
        with mock.patch.object(status_normalizer, "repair_statuses", return_value=1) as repair:
            assert with_status_repair(loader, context="test") == "loaded"
        repair.assert_called_once()
        assert loader.call_count == 2

    def test_second_failure_is_hard(self):
        loader = mock.Mock(side_effect=LookupError("still bad"))
        with mock.patch.object(status_normalizer, "repair_statuses", return_value=0) as repair:
            with pytest.raises(StatusCorruptionError):
                with_status_repair(loader, context="test")
        repair.assert_called_once()
        assert loader.call_count == 2

    def test_unrelated_error_propagates_without_repair(self):
        loader = mock.Mock(side_effect=ValueError("nope"))
        with mock.patch.object(status_normalizer, "repair_statuses") as repair:
            with pytest.raises(ValueError):
                with_status_repair(loader)
        repair.assert_not_called()


# ═══════════════════════════════════════════════════════════════════════════
# TestHealOnRead: real legacy rows through the request loader
# ═══════════════════════════════════════════════════════════════════════════


class TestHealOnRead:

    def test_legacy_row_loads_with_canonical_status(self):
        rid = _insert_raw("PENDING")
        req = load_request(rid)
        assert req.status == "SUBMITTED"

    def test_null_row_loads_as_draft(self):
        rid = _insert_raw(None)
        req = load_request(rid)
        assert req.status == "DRAFT"

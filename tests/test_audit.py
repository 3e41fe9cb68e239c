"""
Audit Writer Tests — vocabulary enforcement and row shape.
"""

import pytest

from portal.models.audit import AUDIT_ACTIONS, AUDIT_ENTITY_TYPES, AuditLog, write_audit


class TestWriteAudit:

    def test_writes_row(self, make_user):
        actor = make_user()
        log = write_audit(
            entity_type="request",
            entity_id=12,
            action="request.splintering_flagged",
            actor_user_id=actor.id,
            diff={"combined": "270000"},
        )
        assert log.id is not None
        assert log.entity_id == "12"
        assert log.diff == {"combined": "270000"}

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError, match="action"):
            write_audit(entity_type="request", entity_id=1, action="request.deleted")
        assert AuditLog.query.count() == 0

    def test_unknown_entity_type_rejected(self):
        with pytest.raises(ValueError, match="entity type"):
            write_audit(entity_type="vendor", entity_id=1, action="request.splintering_flagged")
        assert AuditLog.query.count() == 0

    def test_vocabulary_covers_engine_actions(self):
        assert {
            "request.splintering_flagged",
            "request.splintering_override",
            "load_balancing.settings_updated",
            "load_balancing.counter_reset",
            "request.statuses_repaired",
        } <= AUDIT_ACTIONS
        assert {"request", "load_balancing_settings", "request_table"} <= AUDIT_ENTITY_TYPES

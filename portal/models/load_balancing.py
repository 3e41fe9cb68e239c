"""
Procurement Portal
Load-balancing domain model.

Models:
    - LoadBalancingSettings: singleton configuration row for auto-assignment.
    - RequestAssignmentLog: one row per system assignment.
    - OfficerPerformanceMetrics: per-officer assignment counters.
"""

from datetime import datetime, timezone

from portal.models import db

LOAD_BALANCING_STRATEGIES = {"LEAST_LOADED", "ROUND_ROBIN", "RANDOM"}


def _utcnow():
    return datetime.now(timezone.utc)


class LoadBalancingSettings(db.Model):
    """
    Auto-assignment configuration.

    Meant to hold a single row. If duplicates ever exist, the most recently
    updated row is authoritative (see ``authoritative``).
    """

    __tablename__ = "load_balancing_settings"

    id = db.Column(db.Integer, primary_key=True)
    enabled = db.Column(db.Boolean, nullable=False, default=False)
    strategy = db.Column(db.String(20), nullable=False, default="LEAST_LOADED")
    auto_assign_on_approval = db.Column(db.Boolean, nullable=False, default=True)
    round_robin_counter = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Monotonic; +1 per round-robin assignment, reset only by admin",
    )
    splintering_enabled = db.Column(db.Boolean, nullable=False, default=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    @classmethod
    def authoritative(cls):
        """Return the most-recently-updated settings row, or None."""
        return (
            cls.query
            .order_by(cls.updated_at.desc(), cls.id.desc())
            .first()
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "enabled": self.enabled,
            "strategy": self.strategy,
            "auto_assign_on_approval": self.auto_assign_on_approval,
            "round_robin_counter": self.round_robin_counter,
            "splintering_enabled": self.splintering_enabled,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class RequestAssignmentLog(db.Model):
    __tablename__ = "request_assignment_logs"
    __table_args__ = (
        db.Index("idx_assignment_log_request", "request_id", "assigned_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("requests.id", ondelete="CASCADE"), nullable=False)
    officer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    strategy = db.Column(db.String(20), nullable=False)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "officer_id": self.officer_id,
            "strategy": self.strategy,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class OfficerPerformanceMetrics(db.Model):
    __tablename__ = "officer_performance_metrics"

    id = db.Column(db.Integer, primary_key=True)
    officer_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False,
    )
    total_assignments = db.Column(db.Integer, nullable=False, default=0)
    active_assignments = db.Column(db.Integer, nullable=False, default=0)
    completed_assignments = db.Column(db.Integer, nullable=False, default=0)
    last_assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "officer_id": self.officer_id,
            "total_assignments": self.total_assignments,
            "active_assignments": self.active_assignments,
            "completed_assignments": self.completed_assignments,
            "last_assigned_at": self.last_assigned_at.isoformat() if self.last_assigned_at else None,
            "last_completed_at": self.last_completed_at.isoformat() if self.last_completed_at else None,
        }

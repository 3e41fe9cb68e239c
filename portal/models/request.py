"""
Procurement Portal
Request domain model.

Models:
    - Request: a procurement request moving through the approval pipeline.
    - RequestStatusHistory: append-only ledger of status transitions.

Lifecycle (not strictly linear, some paths skip stages):
    DRAFT → SUBMITTED → DEPARTMENT_REVIEW → DEPARTMENT_APPROVED | DEPARTMENT_RETURNED
    → EXECUTIVE_REVIEW | HOD_REVIEW → PROCUREMENT_REVIEW
    → FINANCE_REVIEW | BUDGET_MANAGER_REVIEW → FINANCE_APPROVED | FINANCE_RETURNED
    → SENT_TO_VENDOR → CLOSED, with REJECTED reachable from most open states.
"""

from datetime import datetime, timezone
from decimal import Decimal

from portal.models import db

__all__ = [
    "REQUEST_STATUSES",
    "ACTIVE_SPEND_STATUSES",
    "LEGACY_STATUS_REMAPS",
    "REQUEST_TRANSITIONS",
    "Request",
    "RequestStatusHistory",
]


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

# Canonical status set, in pipeline order.
REQUEST_STATUSES = (
    "DRAFT",
    "SUBMITTED",
    "DEPARTMENT_REVIEW",
    "DEPARTMENT_RETURNED",
    "DEPARTMENT_APPROVED",
    "EXECUTIVE_REVIEW",
    "HOD_REVIEW",
    "PROCUREMENT_REVIEW",
    "FINANCE_REVIEW",
    "FINANCE_RETURNED",
    "BUDGET_MANAGER_REVIEW",
    "FINANCE_APPROVED",
    "SENT_TO_VENDOR",
    "CLOSED",
    "REJECTED",
)

# Statuses that represent live or approved spend. Drafts, returns and
# terminal negatives are left out to keep splintering false positives down.
ACTIVE_SPEND_STATUSES = frozenset({
    "SUBMITTED",
    "DEPARTMENT_REVIEW",
    "DEPARTMENT_APPROVED",
    "EXECUTIVE_REVIEW",
    "HOD_REVIEW",
    "FINANCE_REVIEW",
    "BUDGET_MANAGER_REVIEW",
    "PROCUREMENT_REVIEW",
    "FINANCE_APPROVED",
    "SENT_TO_VENDOR",
})

# Retired status names → canonical target. Order matters only for readability;
# each remap is applied as its own UPDATE.
LEGACY_STATUS_REMAPS = (
    ("SUBMITTED", ("PENDING", "UNDER_REVIEW")),
    ("DEPARTMENT_REVIEW", ("DEPT_REVIEW", "DEPARTMENT_APPROVAL", "DEPARTMENT_REVIEWING")),
    ("BUDGET_MANAGER_REVIEW", ("BUDGET_REVIEW", "BUDGET_OFFICER_REVIEW")),
    ("EXECUTIVE_REVIEW", ("EXECUTIVE_APPROVED", "EXECUTIVE_APPROVAL")),
    ("FINANCE_APPROVED", ("APPROVED",)),
    ("PROCUREMENT_REVIEW", ("PROCUREMENT", "PROCUREMENT_APPROVED", "PROCUREMENT_APPROVAL")),
)

_REJECTABLE = [s for s in REQUEST_STATUSES if s not in ("DRAFT", "CLOSED", "REJECTED")]

REQUEST_TRANSITIONS = {
    "submit": {"from": ["DRAFT", "DEPARTMENT_RETURNED", "FINANCE_RETURNED"], "to": "SUBMITTED"},
    "start_department_review": {"from": ["SUBMITTED"], "to": "DEPARTMENT_REVIEW"},
    "department_approve": {"from": ["DEPARTMENT_REVIEW"], "to": "DEPARTMENT_APPROVED"},
    "department_return": {"from": ["DEPARTMENT_REVIEW"], "to": "DEPARTMENT_RETURNED"},
    "escalate_to_executive": {"from": ["DEPARTMENT_REVIEW", "DEPARTMENT_APPROVED"], "to": "EXECUTIVE_REVIEW"},
    "forward_to_hod": {"from": ["DEPARTMENT_REVIEW", "DEPARTMENT_APPROVED"], "to": "HOD_REVIEW"},
    "send_to_procurement": {
        "from": ["DEPARTMENT_APPROVED", "EXECUTIVE_REVIEW", "HOD_REVIEW"],
        "to": "PROCUREMENT_REVIEW",
    },
    "send_to_finance": {"from": ["PROCUREMENT_REVIEW", "EXECUTIVE_REVIEW"], "to": "FINANCE_REVIEW"},
    "send_to_budget_manager": {"from": ["PROCUREMENT_REVIEW", "FINANCE_REVIEW"], "to": "BUDGET_MANAGER_REVIEW"},
    "finance_approve": {"from": ["FINANCE_REVIEW", "BUDGET_MANAGER_REVIEW"], "to": "FINANCE_APPROVED"},
    "finance_return": {"from": ["FINANCE_REVIEW", "BUDGET_MANAGER_REVIEW"], "to": "FINANCE_RETURNED"},
    "send_to_vendor": {"from": ["FINANCE_APPROVED"], "to": "SENT_TO_VENDOR"},
    "close": {"from": ["SENT_TO_VENDOR"], "to": "CLOSED"},
    "reject": {"from": _REJECTABLE, "to": "REJECTED"},
}


# ═════════════════════════════════════════════════════════════════════════════
# Request
# ═════════════════════════════════════════════════════════════════════════════

class Request(db.Model):
    """
    A procurement request.

    ``status`` is a non-native Enum: storage is a plain VARCHAR so rows
    written under retired status names still load into the table, but the
    ORM raises ``LookupError`` when it reads a value outside
    REQUEST_STATUSES. The status normalizer heals those rows.
    """

    __tablename__ = "requests"
    __table_args__ = (
        db.Index("idx_request_status", "status"),
        db.Index("idx_request_assignee_status", "current_assignee_id", "status"),
        db.Index("idx_request_requester_created", "requester_id", "created_at"),
        db.Index("idx_request_department_created", "department_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(30), unique=True, nullable=False)
    title = db.Column(db.String(300), nullable=False, default="")

    requester_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )

    total_estimated = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    currency = db.Column(db.String(3), nullable=False, default="JMD")

    status = db.Column(
        db.Enum(
            *REQUEST_STATUSES,
            name="request_status",
            native_enum=False,
            create_constraint=False,
            length=40,
        ),
        nullable=True,
        default="DRAFT",
    )
    current_assignee_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Officer currently responsible for the request",
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    requester = db.relationship("User", foreign_keys=[requester_id])
    current_assignee = db.relationship("User", foreign_keys=[current_assignee_id])
    department = db.relationship("Department")
    status_history = db.relationship(
        "RequestStatusHistory",
        back_populates="request",
        lazy="dynamic",
        order_by="RequestStatusHistory.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference": self.reference,
            "title": self.title,
            "requester_id": self.requester_id,
            "department_id": self.department_id,
            "total_estimated": str(self.total_estimated) if self.total_estimated is not None else None,
            "currency": self.currency,
            "status": self.status,
            "current_assignee_id": self.current_assignee_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Request {self.reference}: {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# RequestStatusHistory
# ═════════════════════════════════════════════════════════════════════════════

class RequestStatusHistory(db.Model):
    """
    Append-only status ledger. One row per status-changing operation.

    ``changed_by_id`` NULL means the row was written by the system
    (e.g. auto-assignment), not by a user.
    """

    __tablename__ = "request_status_history"
    __table_args__ = (
        db.Index("idx_status_history_request", "request_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("requests.id", ondelete="CASCADE"), nullable=False,
    )
    status = db.Column(db.String(40), nullable=False, comment="Status transitioned to")
    changed_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    comment = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    request = db.relationship("Request", back_populates="status_history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "status": self.status,
            "changed_by_id": self.changed_by_id,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<RequestStatusHistory {self.id}: request={self.request_id} → {self.status}>"

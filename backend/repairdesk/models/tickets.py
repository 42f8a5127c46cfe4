from __future__ import annotations

from ..extensions import db
from ..time_utils import elapsed_days, to_utc_z, utcnow

STATUS_QUEUE = "Queue"
STATUS_DIAGNOSING = "Diagnosing"
STATUS_WAITING_PART = "Waiting_Part"
STATUS_IN_PROGRESS = "In_Progress"
STATUS_COMPLETED = "Completed"
STATUS_PICKED_UP = "Picked_Up"
STATUS_CANCELLED = "Cancelled"
TICKET_STATUSES = (
    STATUS_QUEUE,
    STATUS_DIAGNOSING,
    STATUS_WAITING_PART,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_PICKED_UP,
    STATUS_CANCELLED,
)

CUSTOMER_STUDENT = "Student"
CUSTOMER_LECTURER = "Lecturer"
CUSTOMER_GENERAL = "General"
CUSTOMER_TYPES = (CUSTOMER_STUDENT, CUSTOMER_LECTURER, CUSTOMER_GENERAL)


class ServiceTicket(db.Model):
    """
    Repair job for a customer's device.

    Customer, device and technician are embedded value objects, flattened
    into prefixed columns and re-nested by to_dict(). The technician name is
    a snapshot taken when the ticket is opened.

    LIFECYCLE (see services/ticket_service.py for the transition table):
    Queue -> Diagnosing -> Waiting_Part <-> In_Progress -> Completed -> Picked_Up
    with Cancelled reachable from any state before Completed.

    total_cost_cents == SUM(parts.subtotal_cents) + service_fee_cents and is
    recomputed by the service layer on every parts or fee change.
    """
    __tablename__ = "service_tickets"
    __table_args__ = (
        db.Index("ix_service_tickets_status", "status"),
        db.Index("ix_service_tickets_technician_status", "technician_id", "status"),
        db.Index("ix_service_tickets_customer_phone", "customer_phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable ticket number (e.g., "SRV-2026001")
    ticket_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    customer_name = db.Column(db.String(100), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)
    customer_type = db.Column(db.String(16), nullable=False)

    device_type = db.Column(db.String(64), nullable=False)
    device_brand = db.Column(db.String(64), nullable=True)
    device_model = db.Column(db.String(64), nullable=True)
    device_serial_number = db.Column(db.String(64), nullable=True)
    device_symptoms = db.Column(db.Text, nullable=False)
    device_accessories = db.Column(db.String(255), nullable=False, default="None")

    technician_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    technician_name = db.Column(db.String(100), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=STATUS_QUEUE)

    # All amounts in cents
    service_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    # Each stamp is set once, on the first transition into its state
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    diagnosed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    parts = db.relationship(
        "TicketPart",
        backref="ticket",
        order_by="TicketPart.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def duration_days(self) -> int | None:
        return elapsed_days(self.created_at, self.completed_at)

    def recompute_total(self) -> int:
        parts_total = sum(part.subtotal_cents for part in self.parts)
        self.total_cost_cents = parts_total + (self.service_fee_cents or 0)
        return self.total_cost_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "customer": {
                "name": self.customer_name,
                "phone": self.customer_phone,
                "type": self.customer_type,
            },
            "device": {
                "type": self.device_type,
                "brand": self.device_brand,
                "model": self.device_model,
                "serial_number": self.device_serial_number,
                "symptoms": self.device_symptoms,
                "accessories": self.device_accessories,
            },
            "technician": {
                "id": self.technician_id,
                "name": self.technician_name,
            },
            "status": self.status,
            "parts_used": [part.to_dict() for part in self.parts],
            "service_fee_cents": self.service_fee_cents,
            "total_cost_cents": self.total_cost_cents,
            "notes": self.notes,
            "timestamps": {
                "created_at": to_utc_z(self.created_at),
                "diagnosed_at": to_utc_z(self.diagnosed_at),
                "completed_at": to_utc_z(self.completed_at),
                "picked_up_at": to_utc_z(self.picked_up_at),
            },
            "duration_days": self.duration_days,
            "version_id": self.version_id,
        }


class TicketPart(db.Model):
    """Part fitted during a repair, priced at the moment it was attached."""
    __tablename__ = "ticket_parts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("service_tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price_at_time_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    attached_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "name": self.name,
            "quantity": self.quantity,
            "price_at_time_cents": self.price_at_time_cents,
            "subtotal_cents": self.subtotal_cents,
            "attached_by_user_id": self.attached_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }

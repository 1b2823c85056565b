from commissions.extensions import db
from commissions.errors import ValidationError
from sqlalchemy.orm import validates
from datetime import datetime
import enum
import math
import uuid

def gen_request_id():
    return f"SR-{str(uuid.uuid4())[:8]}"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RequestType(str, enum.Enum):
    CUSTOM_ARTWORK = "custom_artwork"
    PORTRAIT = "portrait"
    LOGO_DESIGN = "logo_design"
    ILLUSTRATION = "illustration"
    DIGITAL_ART = "digital_art"
    TRADITIONAL_ART = "traditional_art"
    ANIMATION = "animation"
    GRAPHIC_DESIGN = "graphic_design"
    CHARACTER_DESIGN = "character_design"
    CONCEPT_ART = "concept_art"
    READY_ARTWORK = "ready_artwork"
    OTHER = "other"


REQUEST_TYPE_LABELS = {
    "custom_artwork": ("Custom artwork", "palette"),
    "portrait": ("Portrait", "person"),
    "logo_design": ("Logo design", "business"),
    "illustration": ("Illustration", "brush"),
    "digital_art": ("Digital art", "computer"),
    "traditional_art": ("Traditional art", "colorize"),
    "animation": ("Animation", "movie"),
    "graphic_design": ("Graphic design", "design_services"),
    "character_design": ("Character design", "face"),
    "concept_art": ("Concept art", "lightbulb"),
    "ready_artwork": ("Ready artwork", "image"),
    "other": ("Other", "more_horiz"),
}


TERMINAL_STATUSES = frozenset({
    RequestStatus.COMPLETED.value,
    RequestStatus.REJECTED.value,
    RequestStatus.CANCELLED.value,
})


def check_choice(enum_cls, value, field):
    """Return the plain string value of an enum member, or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value.value
    allowed = [m.value for m in enum_cls]
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field} '{value}'",
            {"field": field, "allowed": allowed},
        )
    return value


class SpecialRequest(db.Model):
    __tablename__ = "special_requests"

    id = db.Column(db.String(50), primary_key=True, default=gen_request_id)
    # weak references: no foreign keys, no cascades
    sender_id = db.Column(db.String(50), nullable=False, index=True)
    artist_id = db.Column(db.String(50), nullable=False, index=True)
    category_id = db.Column(db.String(50), nullable=True, index=True)

    request_type = db.Column(db.String(50), nullable=False, index=True)
    title = db.Column(db.String(255))
    description = db.Column(db.Text, nullable=False)
    budget = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(10), default="SAR")
    quoted_price = db.Column(db.Float)
    final_price = db.Column(db.Float)
    status = db.Column(db.String(50), default=RequestStatus.PENDING.value, nullable=False, index=True)
    priority = db.Column(db.String(20), default=Priority.MEDIUM.value, nullable=False)
    tags = db.Column(db.JSON, default=list)
    response = db.Column(db.Text)
    final_note = db.Column(db.Text)

    deadline = db.Column(db.DateTime)
    estimated_delivery = db.Column(db.DateTime)

    current_progress = db.Column(db.Integer, default=0, nullable=False)
    used_revisions = db.Column(db.Integer, default=0, nullable=False)
    max_revisions = db.Column(db.Integer, default=3, nullable=False)
    allow_revisions = db.Column(db.Boolean, default=True, nullable=False)
    is_private = db.Column(db.Boolean, default=False, nullable=False)

    attachments = db.Column(db.JSON, default=list)
    deliverables = db.Column(db.JSON, default=list)

    accepted_at = db.Column(db.DateTime)
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    rejected_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)

    cancellation_reason = db.Column(db.Text)
    cancelled_by = db.Column(db.String(50))
    refund_amount = db.Column(db.Float)
    refund_status = db.Column(db.String(20))  # pending, processed
    refunded_at = db.Column(db.DateTime)

    rating = db.Column(db.Integer)
    feedback = db.Column(db.Text)
    feedback_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    milestones = db.relationship(
        "Milestone", backref="special_request", lazy=True,
        cascade="all, delete-orphan", order_by="Milestone.created_at",
    )
    revisions = db.relationship(
        "Revision", backref="special_request", lazy=True,
        cascade="all, delete-orphan", order_by="Revision.created_at",
    )
    progress_updates = db.relationship(
        "ProgressUpdate", backref="special_request", lazy=True,
        cascade="all, delete-orphan", order_by="ProgressUpdate.created_at",
    )

    sender = db.relationship("User", primaryjoin="foreign(SpecialRequest.sender_id) == User.id", viewonly=True)
    artist = db.relationship("User", primaryjoin="foreign(SpecialRequest.artist_id) == User.id", viewonly=True)
    category = db.relationship("Category", primaryjoin="foreign(SpecialRequest.category_id) == Category.id", viewonly=True)

    @validates("status")
    def _validate_status(self, key, value):
        return check_choice(RequestStatus, value, "status")

    @validates("priority")
    def _validate_priority(self, key, value):
        return check_choice(Priority, value, "priority")

    @validates("request_type")
    def _validate_request_type(self, key, value):
        return check_choice(RequestType, value, "request_type")

    @validates("current_progress")
    def _validate_progress(self, key, value):
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
            raise ValidationError("Progress must be an integer between 0 and 100", {"field": "progress"})
        return value

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def remaining_days(self):
        if not self.deadline:
            return None
        days = math.ceil((self.deadline - datetime.utcnow()).total_seconds() / 86400)
        return days if days > 0 else 0

    @property
    def is_overdue(self):
        if not self.deadline:
            return False
        return datetime.utcnow() > self.deadline and self.status not in ("completed", "rejected")

    def serialize(self, populate=(), include_history=False) -> dict:
        """
        Serialize the request. ``populate`` names reference fields
        (sender, artist, category) to expand into nested records.
        """
        iso = lambda d: d.isoformat() + "Z" if d else None
        data = {
            "id": self.id,
            "sender_id": self.sender_id,
            "artist_id": self.artist_id,
            "category_id": self.category_id,
            "request_type": self.request_type,
            "title": self.title,
            "description": self.description,
            "budget": self.budget,
            "currency": self.currency,
            "quoted_price": self.quoted_price,
            "final_price": self.final_price,
            "status": self.status,
            "priority": self.priority,
            "tags": self.tags or [],
            "response": self.response,
            "final_note": self.final_note,
            "deadline": iso(self.deadline),
            "estimated_delivery": iso(self.estimated_delivery),
            "current_progress": self.current_progress,
            "used_revisions": self.used_revisions,
            "max_revisions": self.max_revisions,
            "allow_revisions": self.allow_revisions,
            "is_private": self.is_private,
            "attachments": self.attachments or [],
            "deliverables": self.deliverables or [],
            "accepted_at": iso(self.accepted_at),
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "rejected_at": iso(self.rejected_at),
            "cancelled_at": iso(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "refund_amount": self.refund_amount,
            "refund_status": self.refund_status,
            "rating": self.rating,
            "feedback": self.feedback,
            "remaining_days": self.remaining_days,
            "is_overdue": self.is_overdue,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "milestones": [m.serialize() for m in self.milestones],
        }

        for field in populate:
            ref = getattr(self, field, None)
            data[field] = ref.serialize() if ref is not None else None

        if include_history:
            data["revisions"] = [r.serialize() for r in self.revisions]
            data["progress_updates"] = [p.serialize() for p in self.progress_updates]

        return data

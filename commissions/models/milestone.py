from commissions.extensions import db
from commissions.errors import ValidationError
from commissions.models.special_request import check_choice
from sqlalchemy.orm import validates
from datetime import datetime
import enum
import uuid

def gen_milestone_id():
    return f"MS-{str(uuid.uuid4())[:8]}"


class MilestoneStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Milestone(db.Model):
    __tablename__ = "milestones"

    id = db.Column(db.String(50), primary_key=True, default=gen_milestone_id)
    request_id = db.Column(db.String(50), db.ForeignKey("special_requests.id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    due_date = db.Column(db.DateTime)
    percentage = db.Column(db.Integer, default=0, nullable=False)  # weight in overall progress
    status = db.Column(db.String(20), default=MilestoneStatus.PENDING.value, nullable=False)
    completed_at = db.Column(db.DateTime)
    deliverables = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @validates("status")
    def _validate_status(self, key, value):
        return check_choice(MilestoneStatus, value, "milestone status")

    @validates("percentage")
    def _validate_percentage(self, key, value):
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
            raise ValidationError("Milestone percentage must be an integer between 0 and 100", {"field": "percentage"})
        return value

    def serialize(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date.isoformat() + "Z" if self.due_date else None,
            "percentage": self.percentage,
            "status": self.status,
            "completed_at": self.completed_at.isoformat() + "Z" if self.completed_at else None,
            "deliverables": self.deliverables or [],
        }

from commissions.extensions import db
from commissions.models.special_request import Priority, check_choice
from sqlalchemy.orm import validates
from datetime import datetime
import uuid

def gen_revision_id():
    return f"REV-{str(uuid.uuid4())[:8]}"

REVISION_STATUSES = ("pending", "in_progress", "completed")


class Revision(db.Model):
    __tablename__ = "revisions"

    id = db.Column(db.String(50), primary_key=True, default=gen_revision_id)
    request_id = db.Column(db.String(50), db.ForeignKey("special_requests.id"), nullable=False, index=True)
    requester_id = db.Column(db.String(50), nullable=False)
    feedback = db.Column(db.Text, nullable=False)
    specific_changes = db.Column(db.JSON, default=list)
    priority = db.Column(db.String(20), default=Priority.MEDIUM.value)
    attachments = db.Column(db.JSON, default=list)
    status = db.Column(db.String(20), default="pending")
    artist_response = db.Column(db.Text)
    responded_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @validates("priority")
    def _validate_priority(self, key, value):
        return check_choice(Priority, value, "priority")

    def serialize(self):
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "feedback": self.feedback,
            "specific_changes": self.specific_changes or [],
            "priority": self.priority,
            "attachments": self.attachments or [],
            "status": self.status,
            "artist_response": self.artist_response,
            "responded_at": self.responded_at.isoformat() + "Z" if self.responded_at else None,
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
        }

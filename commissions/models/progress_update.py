from commissions.extensions import db
from datetime import datetime
import uuid

def gen_progress_id():
    return f"PU-{str(uuid.uuid4())[:8]}"


class ProgressUpdate(db.Model):
    """Append-only progress log entry. Never edited after insert."""
    __tablename__ = "progress_updates"

    id = db.Column(db.String(50), primary_key=True, default=gen_progress_id)
    request_id = db.Column(db.String(50), db.ForeignKey("special_requests.id"), nullable=False, index=True)
    percentage = db.Column(db.Integer, nullable=False)
    note = db.Column(db.Text)
    attachments = db.Column(db.JSON, default=list)
    milestone_id = db.Column(db.String(50), nullable=True)
    updated_by = db.Column(db.String(50), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def serialize(self):
        return {
            "id": self.id,
            "percentage": self.percentage,
            "note": self.note,
            "attachments": self.attachments or [],
            "milestone_id": self.milestone_id,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
        }

from commissions.extensions import db
from datetime import datetime
import uuid

def gen_notification_id():
    return f"NTF-{str(uuid.uuid4())[:8]}"

class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.String(50), primary_key=True, default=gen_notification_id)
    user_id = db.Column(db.String(50), nullable=False, index=True)
    sender_id = db.Column(db.String(50), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text)
    type = db.Column(db.String(50))  # special_request_accepted, revision_requested, ...
    details = db.Column(db.JSON, default=dict)
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def serialize(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "details": self.details or {},
            "sender_id": self.sender_id,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
        }

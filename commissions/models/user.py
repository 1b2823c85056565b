from commissions.extensions import db
from datetime import datetime
import uuid

def gen_user_id():
    return f"USR-{str(uuid.uuid4())[:8]}"

class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(50), primary_key=True, default=gen_user_id)
    display_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, index=True)
    role = db.Column(db.String(20), default="buyer")  # buyer, artist, admin
    profile_image = db.Column(db.String(512))
    rating = db.Column(db.Float, default=0.0)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    joined_at = db.Column(db.DateTime, default=datetime.utcnow)

    def serialize(self):
        return {
            "id": self.id,
            "display_name": self.display_name,
            "profile_image": self.profile_image,
            "role": self.role,
            "rating": round(self.rating or 0, 1),
        }

from commissions.extensions import db
import uuid

def gen_category_id():
    return f"CAT-{str(uuid.uuid4())[:8]}"

class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.String(50), primary_key=True, default=gen_category_id)
    name = db.Column(db.String(255), nullable=False)
    image = db.Column(db.String(512))

    def serialize(self):
        return {"id": self.id, "name": self.name, "image": self.image}

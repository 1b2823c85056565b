from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from commissions.extensions import db
from commissions.models.notification import Notification


def send_notification_to_user(user_id, title, message, notif_type, details=None, sender_id=None):
    """
    Best-effort notification. Runs after the lifecycle change is committed;
    a failure here is logged and never reaches the caller.
    """
    if not user_id:
        return None

    try:
        notification = Notification(
            user_id=user_id,
            sender_id=sender_id,
            title=title,
            message=message,
            type=notif_type,
            details=details or {},
        )
        db.session.add(notification)
        db.session.commit()
        return notification
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.warning(f"[NOTIFICATION_FAILED] {notif_type} to {user_id}: {e}")
        return None


def list_notifications(user_id, unread_only=False):
    q = Notification.query.filter_by(user_id=user_id)
    if unread_only:
        q = q.filter_by(is_read=False)
    return q.order_by(Notification.created_at.desc())


def mark_as_read(user_id, notification_id):
    notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
    if not notification:
        return None
    notification.is_read = True
    db.session.commit()
    return notification

from flask_jwt_extended import get_jwt, get_jwt_identity


def current_actor():
    """Return (actor_id, role) for the authenticated caller."""
    claims = get_jwt()
    return get_jwt_identity(), claims.get("role", "buyer")


def is_party(special_request, actor_id):
    return actor_id in (special_request.sender_id, special_request.artist_id)

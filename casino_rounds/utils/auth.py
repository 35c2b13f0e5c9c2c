from flask_jwt_extended import get_jwt_identity

from casino_rounds.models import db, Profile

# Access tokens are issued by the external auth service; this app only verifies them


def user_identity_lookup(profile):
    return str(profile.id)

def user_lookup_callback(_jwt_header, jwt_data):
    identity = jwt_data["sub"]
    try:
        return db.session.get(Profile, int(identity))
    except (TypeError, ValueError):
        return None

def current_user_id():
    """Caller id from the verified token, as an int."""
    return int(get_jwt_identity())

def register_jwt_handlers(jwt):
    jwt.user_identity_loader(user_identity_lookup)
    jwt.user_lookup_loader(user_lookup_callback)

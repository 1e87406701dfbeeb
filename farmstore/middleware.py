"""Middleware for authentication context."""
from flask import session, g, current_app
from farmstore.database import get_session
from farmstore.models import Profile


def load_profile():
    """
    Load the current profile into g (Flask's per-request global).

    The identity provider authenticates the user; the session only carries
    its user id. Sets g.user and g.user_role when a matching active profile
    exists.
    """
    g.user = None
    g.user_id = None
    g.user_role = None

    external_id = session.get('user_id')
    if not external_id:
        return

    try:
        db_session = get_session()
        if not db_session:
            return
        profile = db_session.query(Profile).filter_by(external_id=str(external_id), active=True).first()
        if profile:
            g.user = profile
            g.user_id = profile.id
            g.user_role = profile.role
    except Exception as e:
        # Avoid crashing the whole app if context loading fails
        current_app.logger.error(f"Error in load_profile: {e}")

"""
Role gates for the POS endpoints.

The identity provider authenticates users; `load_profile` maps them to a
Profile and these decorators check its role.
"""

from functools import wraps
from flask import g

from farmstore.exceptions import FarmStoreError, UnauthorizedError
from farmstore.models import STAFF_ROLES


def require_role(*allowed_roles):
    """
    Allow the view only for profiles whose role is in `allowed_roles`.

    Usage:
        @require_role('admin')
        @require_role('worker', 'admin')

    Anonymous requests get 401, other roles get 403.
    """
    def decorator(view):
        @wraps(view)
        def guarded_view(*args, **kwargs):
            if g.get('user') is None:
                raise FarmStoreError('Authentication required', status_code=401)

            if g.get('user_role') not in allowed_roles:
                raise UnauthorizedError('You do not have permission to use the point of sale.')

            return view(*args, **kwargs)

        return guarded_view
    return decorator


def staff_only(view):
    """Workers and admins: cart, checkout and M-Pesa confirmation."""
    return require_role(*STAFF_ROLES)(view)


def admin_only(view):
    """Admins only: marking M-Pesa payments failed, changing order status."""
    return require_role('admin')(view)

from functools import wraps
from flask import abort
from flask_jwt_extended import verify_jwt_in_request
from cassette_rc.services.policy import current_permissions


def require_permissions(*codes: str):
    """Capability check run once per operation, before the handler touches any state."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            missing = [c for c in codes if c not in current_permissions()]
            if missing:
                abort(403, description=f"Missing permission {', '.join(missing)}")
            return fn(*args, **kwargs)
        return wrapper
    return outer

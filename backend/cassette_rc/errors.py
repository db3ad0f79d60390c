"""Domain error taxonomy.

Every error is a werkzeug HTTPException so the unified handler in the app factory
renders it with the right status code; services raise them directly and the
surrounding transaction (see ``cassette_rc.services.effects.atomic``) rolls back.
"""
from __future__ import annotations
from werkzeug import exceptions as wz


class InvalidTransition(wz.BadRequest):
    """Requested status edge is not in the entity's adjacency table."""


class IllegalCassetteTransition(InvalidTransition):
    """Cassette's current status does not accept the triggering event."""


class ValidationFailed(wz.BadRequest):
    pass


class Forbidden(wz.Forbidden):
    pass


class NotFound(wz.NotFound):
    pass


class Conflict(wz.Conflict):
    """Duplicate active repair ticket / PM task / order, duplicate unique code."""


class ConcurrentModification(Conflict):
    """A compare-and-swap on a status column found a different value than planned."""


class PreconditionFailed(wz.PreconditionFailed):
    pass


__all__ = [
    'InvalidTransition', 'IllegalCassetteTransition', 'ValidationFailed', 'Forbidden',
    'NotFound', 'Conflict', 'ConcurrentModification', 'PreconditionFailed',
]

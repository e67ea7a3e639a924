from enum import Enum
from flask import current_app
from bforms.errors import Forbidden
from bforms.models import LEVEL_VIEW, LEVEL_RESPOND, LEVEL_EDIT


class Action(Enum):
    VIEW = 'view'
    RESPOND = 'respond'
    EDIT = 'edit'
    DELETE = 'delete'
    SHARE = 'share'
    VIEW_RESPONSES = 'view_responses'


OWNER_ONLY_ACTIONS = (Action.DELETE, Action.SHARE, Action.VIEW_RESPONSES)

# Share levels that satisfy each shareable action
LEVELS_FOR_ACTION = {
    Action.VIEW: (LEVEL_VIEW, LEVEL_RESPOND, LEVEL_EDIT),
    Action.RESPOND: (LEVEL_RESPOND, LEVEL_EDIT),
    Action.EDIT: (LEVEL_EDIT,),
}


class Decision:
    __slots__ = ('allowed', 'reason')

    def __init__(self, allowed, reason=None):
        self.allowed = allowed
        self.reason = reason

    def __bool__(self):
        return self.allowed

    def __repr__(self):
        return 'Allow' if self.allowed else f"Deny({self.reason!r})"

    @classmethod
    def allow(cls):
        return cls(True)

    @classmethod
    def deny(cls, reason):
        return cls(False, reason)


def as_identity(identity):
    """Normalizes Flask-Login's anonymous user (or None) to None."""
    if identity is None or not getattr(identity, 'is_authenticated', False):
        return None
    return identity


class AccessService:
    """
    Decides who may do what with a template.

    Rules are evaluated top to bottom and the first match wins:
    owner, owner-only actions, archived, public, share grants, deny.
    """

    @staticmethod
    def find_share(template, identity):
        identity = as_identity(identity)
        if identity is None:
            return None
        email = (identity.email or '').lower()
        for share in template.shares:
            if share.grantee_user_id == identity.id or share.grantee_email == email:
                return share
        return None

    @staticmethod
    def authorize(template, identity, action):
        identity = as_identity(identity)

        if identity is not None and template.owner_id == identity.id:
            return Decision.allow()

        if action in OWNER_ONLY_ACTIONS:
            return Decision.deny('owner-only action')

        if action == Action.VIEW and template.is_archived:
            return Decision.deny('archived')

        if action in (Action.VIEW, Action.RESPOND) and template.is_public and not template.is_archived:
            return Decision.allow()

        if identity is not None:
            share = AccessService.find_share(template, identity)
            if share and share.level in LEVELS_FOR_ACTION.get(action, ()):
                return Decision.allow()

        return Decision.deny('access denied')

    @staticmethod
    def require(template, identity, action):
        decision = AccessService.authorize(template, identity, action)
        if not decision:
            who = getattr(as_identity(identity), 'id', 'anonymous')
            current_app.logger.warning(
                f"Denied {action.value} on template {template.id} for {who}: {decision.reason}"
            )
            raise Forbidden(decision.reason)
        return decision

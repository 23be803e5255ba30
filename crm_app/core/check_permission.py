"""Single capability check used by the booking and chat services.

``authorize(user, action, resource)`` answers yes/no; ``require`` raises
``AuthorizationError``. Route code never compares roles inline.
"""

from models.enums import UserRole

from .exceptions import AuthorizationError


ROLE_PERMISSIONS: dict[UserRole, frozenset[str]] = {
    UserRole.ADMIN: frozenset(
        {
            "users:read",
            "users:write",
            "customers:read",
            "customers:write",
            "customers:delete",
            "properties:read",
            "properties:write",
            "bookings:read",
            "bookings:write",
            "bookings:manage",
            "bookings:delete",
            "transactions:read",
            "transactions:write",
            "reports:read",
            "settings:write",
            "events:read",
            "events:write",
            "tasks:read",
            "tasks:write",
            "chat:read",
            "chat:write",
        }
    ),
    UserRole.MANAGER: frozenset(
        {
            "users:read",
            "customers:read",
            "customers:write",
            "properties:read",
            "properties:write",
            "bookings:read",
            "bookings:write",
            "bookings:manage",
            "transactions:read",
            "transactions:write",
            "reports:read",
            "events:read",
            "events:write",
            "tasks:read",
            "tasks:write",
            "chat:read",
            "chat:write",
        }
    ),
    UserRole.SALES: frozenset(
        {
            "customers:read",
            "customers:write",
            "properties:read",
            "bookings:read",
            "bookings:write",
            "events:read",
            "tasks:read",
            "tasks:write",
            "chat:read",
            "chat:write",
        }
    ),
    UserRole.ACCOUNTANT: frozenset(
        {
            "customers:read",
            "properties:read",
            "bookings:read",
            "transactions:read",
            "transactions:write",
            "reports:read",
            "tasks:read",
            "tasks:write",
        }
    ),
    UserRole.MARKETING: frozenset(
        {
            "customers:read",
            "properties:read",
            "reports:read",
            "events:read",
            "events:write",
            "tasks:read",
            "tasks:write",
        }
    ),
    UserRole.SUPPORT: frozenset(
        {
            "customers:read",
            "properties:read",
            "bookings:read",
            "events:read",
            "tasks:read",
            "chat:read",
            "chat:write",
        }
    ),
}

# SALES only sees and edits records they created.
OWN_ONLY: dict[UserRole, frozenset[str]] = {
    UserRole.SALES: frozenset({"bookings", "customers", "tasks"}),
}


class CheckRolePermission:
    def permissions_for(self, role: UserRole) -> frozenset[str]:
        return ROLE_PERMISSIONS.get(role, frozenset())

    def is_own_only(self, role: UserRole, resource_name: str) -> bool:
        return resource_name in OWN_ONLY.get(role, frozenset())

    def authorize(self, user, action: str, resource=None) -> bool:
        if user is None or not getattr(user, "is_active", True):
            return False
        if action not in self.permissions_for(user.role):
            return False

        if resource is not None:
            resource_name = action.split(":", 1)[0]
            if self.is_own_only(user.role, resource_name):
                owner_id = getattr(resource, "created_by_id", None)
                return owner_id == user.id
        return True

    def require(self, user, action: str, resource=None) -> None:
        if not self.authorize(user, action, resource):
            user_id = getattr(user, "id", None)
            raise AuthorizationError(f"user {user_id} lacks {action}")

    def list_scope(self, user, resource_name: str):
        """Owner id to filter listings by, or None for everything."""
        if self.is_own_only(user.role, resource_name):
            return user.id
        return None

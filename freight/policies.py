from accounts.models import User


def is_admin(user) -> bool:
    return getattr(user, "role", None) == User.Role.ADMIN or getattr(user, "is_superuser", False)


def is_dispatcher(user) -> bool:
    return getattr(user, "role", None) == User.Role.DISPATCHER or is_admin(user)


def is_accountant(user) -> bool:
    return getattr(user, "role", None) == User.Role.ACCOUNTANT or is_admin(user)


def can_dispatch(user) -> bool:
    """Assign drivers, move loads through their lifecycle."""
    return is_dispatcher(user)


def can_settle(user) -> bool:
    """Generate, approve and pay driver settlements; bill customers."""
    return is_accountant(user)

"""User name resolution for process owners and the requesting user."""

import os
import pwd

UNKNOWN_USER = "unknown"


def resolve_owner_name(uid: int, cache: dict[int, str] | None = None) -> str:
    """Return the passwd name for uid, or the uid as decimal text.

    Args:
        uid: Numeric user id
        cache: Optional per-pass memo of uid -> name
    """
    if cache is not None and uid in cache:
        return cache[uid]
    try:
        name = pwd.getpwuid(uid).pw_name
    except (KeyError, OverflowError):
        name = str(uid)
    if cache is not None:
        cache[uid] = name
    return name


def resolve_current_user() -> str:
    """Return who is running the query.

    Order: session login name, then the passwd name of the effective uid,
    then "unknown". Never raises.
    """
    try:
        name = os.getlogin()
    except OSError:
        name = ""
    if name:
        return name
    try:
        return pwd.getpwuid(os.geteuid()).pw_name
    except KeyError:
        return UNKNOWN_USER

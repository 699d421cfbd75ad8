import os
import grp
import pwd
import logging
import setproctitle
from typing import Optional, Union

log = logging.getLogger(__name__)

IdentitySpec = Union[int, str, None]


class IdentityError(OSError):
    """Raised when a process title, group or user cannot be applied."""


def resolve_uid(user: IdentitySpec) -> Optional[int]:
    """
    Resolves a user name or numeric id to a uid.

    :param user: A uid, a numeric string or a user name.
    :return: The numeric uid, or None if no user was given.
    :raises IdentityError: If the user does not exist.
    """
    if user is None or user == "":
        return None
    if isinstance(user, int) or str(user).isdigit():
        return int(user)
    try:
        return pwd.getpwnam(str(user)).pw_uid
    except KeyError:
        raise IdentityError(f"Unknown user '{user}'") from None


def resolve_gid(group: IdentitySpec) -> Optional[int]:
    """
    Resolves a group name or numeric id to a gid.

    :param group: A gid, a numeric string or a group name.
    :return: The numeric gid, or None if no group was given.
    :raises IdentityError: If the group does not exist.
    """
    if group is None or group == "":
        return None
    if isinstance(group, int) or str(group).isdigit():
        return int(group)
    try:
        return grp.getgrnam(str(group)).gr_gid
    except KeyError:
        raise IdentityError(f"Unknown group '{group}'") from None


def apply_process_attributes(title: Optional[str], uid: IdentitySpec = None, gid: IdentitySpec = None) -> None:
    """
    Sets the process title, then drops to the given group and user.

    The group is changed before the user, since an unprivileged user can no
    longer change its group. The first failing step aborts the rest.

    :param title: The title shown in the process table, skipped if empty.
    :param uid: The user to switch to, skipped if None.
    :param gid: The group to switch to, skipped if None.
    :raises IdentityError: If any step fails.
    """
    if title:
        setproctitle.setproctitle(title)
        log.debug(f"Process title set to '{title}'.")

    target_gid = resolve_gid(gid)
    if target_gid is not None:
        try:
            os.setgid(target_gid)
        except OSError as e:
            raise IdentityError(f"Cannot set gid to {target_gid}: {e.strerror or e}") from e
        log.debug(f"Process gid set to {target_gid}.")

    target_uid = resolve_uid(uid)
    if target_uid is not None:
        try:
            os.setuid(target_uid)
        except OSError as e:
            raise IdentityError(f"Cannot set uid to {target_uid}: {e.strerror or e}") from e
        log.debug(f"Process uid set to {target_uid}.")


def current_title() -> str:
    return setproctitle.getproctitle()

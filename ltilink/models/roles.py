"""
Parsing and classification of LTI membership roles.
"""

from typing import Iterable, List, Union

from ltilink.core.lti_config import LTIVersion


ROLE_PREFIX_V1 = "urn:lti:role:ims/lis/"
ROLE_PREFIX_V2 = "http://purl.imsglobal.org/vocab/lis/v2/membership#"

STAFF_ROLES = ("Instructor", "ContentDeveloper", "TeachingAssistant")
LEARNER_ROLES = ("Learner",)
ADMIN_ROLES = ("Administrator",)


def parse_roles(
    roles: Union[str, Iterable[str], None],
    lti_version: LTIVersion = LTIVersion.V1
) -> List[str]:
    """
    Expand short role names into fully qualified role URIs.

    Args:
        roles: Comma-separated string or iterable of role names
        lti_version: Message version deciding the vocabulary prefix

    Returns:
        List of fully qualified roles, duplicates removed
    """
    if not roles:
        return []
    if isinstance(roles, str):
        roles = roles.split(',')

    parsed: List[str] = []
    for role in roles:
        role = role.strip()
        if not role:
            continue
        if not role.startswith(('urn:', 'http://', 'https://')):
            prefix = ROLE_PREFIX_V1 if lti_version == LTIVersion.V1 else ROLE_PREFIX_V2
            role = f"{prefix}{role}"
        if role not in parsed:
            parsed.append(role)
    return parsed


def _short_name(role: str) -> str:
    if '#' in role:
        return role.rsplit('#', 1)[1]
    return role.rsplit('/', 1)[-1]


def has_role(roles: Iterable[str], *names: str) -> bool:
    """Check whether any of the roles matches one of the short role names."""
    return any(_short_name(role) in names for role in roles)


def is_staff(roles: Iterable[str]) -> bool:
    return has_role(roles, *STAFF_ROLES)


def is_learner(roles: Iterable[str]) -> bool:
    return has_role(roles, *LEARNER_ROLES)


def is_admin(roles: Iterable[str]) -> bool:
    return has_role(roles, *ADMIN_ROLES)

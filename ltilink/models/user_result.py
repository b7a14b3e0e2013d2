"""
A user's membership and result record within a resource link.
"""

from datetime import datetime
from typing import Any, List, Optional

from ltilink.core.lti_config import IdScope, ID_SCOPE_SEPARATOR
from ltilink.models import roles as role_utils


class UserResult:
    """User enrolled in a resource link, with an optional result sourcedId."""

    def __init__(self, resource_link: Any = None, lti_user_id: Optional[str] = None):
        self.resource_link = resource_link
        self.resource_link_id: Optional[int] = getattr(resource_link, 'record_id', None)
        self.record_id: Optional[int] = None
        self.lti_user_id = lti_user_id
        self.firstname = ''
        self.lastname = ''
        self.fullname = ''
        self.sourced_id: Optional[str] = None
        self.email = ''
        self.roles: List[str] = []
        self.groups: List[str] = []
        self.lti_result_sourced_id: Optional[str] = None
        self.created: Optional[datetime] = None
        self.updated: Optional[datetime] = None

    @classmethod
    def from_resource_link(cls, resource_link: Any, lti_user_id: str) -> "UserResult":
        return cls(resource_link, lti_user_id)

    def set_names(self, firstname: str = '', lastname: str = '', fullname: str = '') -> None:
        """Set the user's names, deriving whichever ones are missing."""
        firstname = (firstname or '').strip()
        lastname = (lastname or '').strip()
        fullname = (fullname or '').strip()
        if not fullname and (firstname or lastname):
            fullname = f"{firstname} {lastname}".strip()
        if fullname and not firstname and not lastname:
            parts = fullname.split(' ', 1)
            if len(parts) == 2:
                firstname, lastname = parts
            else:
                lastname = fullname
        self.firstname = firstname
        self.lastname = lastname
        self.fullname = fullname

    def set_email(self, email: Optional[str], default_email: Optional[str] = None) -> None:
        """
        Set the email address, falling back to a platform default.

        A default beginning with ``@`` is treated as a domain and prefixed
        with the user ID.
        """
        if not email and default_email:
            email = default_email
            if email.startswith('@'):
                email = f"{self.lti_user_id}{email}" if self.lti_user_id else ''
        self.email = email or ''

    def is_staff(self) -> bool:
        return role_utils.is_staff(self.roles)

    def is_learner(self) -> bool:
        return role_utils.is_learner(self.roles)

    def is_admin(self) -> bool:
        return role_utils.is_admin(self.roles)

    def get_resource_link(self) -> Any:
        return self.resource_link

    async def get_id(self, id_scope: Optional[IdScope] = None) -> Optional[str]:
        """
        Get the user ID qualified by the requested scope.

        Args:
            id_scope: Scope of uniqueness for the ID (default is the bare ID)

        Returns:
            Scoped user ID
        """
        if id_scope is None or id_scope == IdScope.ID_ONLY or self.resource_link is None:
            return self.lti_user_id

        platform = await self.resource_link.get_platform()
        key = platform.get_key()
        if id_scope == IdScope.GLOBAL:
            parts = [key, self.lti_user_id]
        elif id_scope == IdScope.CONTEXT:
            context = await self.resource_link.get_context()
            if context is None:
                parts = [key, self.lti_user_id]
            else:
                parts = [key, context.lti_context_id, self.lti_user_id]
        else:
            parts = [key, self.resource_link.lti_resource_link_id, self.lti_user_id]
        return ID_SCOPE_SEPARATOR.join(str(part) for part in parts if part is not None)

    async def save(self) -> bool:
        """Persist the user result through the resource link's data connector."""
        data_connector = await self.resource_link.get_data_connector()
        return await data_connector.save_user_result(self)

    async def delete(self) -> bool:
        """Delete the user result through the resource link's data connector."""
        data_connector = await self.resource_link.get_data_connector()
        return await data_connector.delete_user_result(self)

    def __repr__(self) -> str:
        return f"UserResult(lti_user_id={self.lti_user_id!r}, sourcedid={self.lti_result_sourced_id!r})"

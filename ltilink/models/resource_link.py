"""
Tool-side record of a single placement of a tool within a platform.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ltilink.core.lti_config import IdScope
from ltilink.integrations.lti.error_handler import LTIConfigurationError
from ltilink.models.http_message import HttpMessage
from ltilink.models.platform import Context, Platform


logger = logging.getLogger(__name__)

SettingValue = Union[str, List[str]]


@dataclass
class ResourceLinkShare:
    """Another resource link sharing this one."""
    resource_link_id: int
    title: str = ''
    approved: Optional[bool] = None


class ResourceLink:
    """
    Resource link with its launch settings and lazily resolved platform/context.

    The platform and context are referenced by record ID and resolved through
    the data connector on first use; resolved objects are cached for the
    lifetime of the instance.
    """

    def __init__(self):
        self.lti_resource_link_id: Optional[str] = None
        self.primary_resource_link_id: Optional[int] = None
        self.share_approved: Optional[bool] = None
        self._record_id: Optional[int] = None
        self._platform: Optional[Platform] = None
        self._platform_id: Optional[int] = None
        self._context: Optional[Context] = None
        self._context_id: Optional[int] = None
        self._data_connector: Any = None
        self.clear_trace()
        self.initialize()

    def initialize(self) -> None:
        """Reset the in-memory state to that of a new resource link."""
        self.title = ''
        self._settings: Dict[str, SettingValue] = {}
        self._settings_changed = False
        self.group_sets: Optional[Dict[str, Dict[str, Any]]] = None
        self.groups: Optional[Dict[str, Dict[str, Any]]] = None
        self.primary_resource_link_id = None
        self.share_approved = None
        self.created: Optional[datetime] = None
        self.updated: Optional[datetime] = None

    # Persistence

    async def save(self) -> bool:
        """Save the resource link through the data connector."""
        data_connector = await self.get_data_connector()
        ok = await data_connector.save_resource_link(self)
        if ok:
            self._settings_changed = False
        return ok

    async def delete(self) -> bool:
        """Delete the resource link through the data connector."""
        data_connector = await self.get_data_connector()
        return await data_connector.delete_resource_link(self)

    async def load(self, record_id: Optional[int] = None) -> bool:
        """Reload the resource link by record ID, or by its LTI ID when no record ID is given."""
        self.initialize()
        self._record_id = record_id
        data_connector = await self.get_data_connector()
        return await data_connector.load_resource_link(self)

    async def get_user_result_sourced_ids(
        self,
        local_only: bool = False,
        id_scope: Optional[IdScope] = None
    ) -> Dict[str, Any]:
        """Users with a result sourcedId, keyed by their scoped ID."""
        data_connector = await self.get_data_connector()
        return await data_connector.get_user_result_sourced_ids(self, local_only, id_scope)

    async def get_shares(self) -> List[ResourceLinkShare]:
        data_connector = await self.get_data_connector()
        return await data_connector.get_shares(self)

    # Identity and references

    @property
    def record_id(self) -> Optional[int]:
        return self._record_id

    @record_id.setter
    def record_id(self, value: Optional[int]) -> None:
        self._record_id = value

    def get_id(self) -> Optional[str]:
        return self.lti_resource_link_id

    @property
    def platform_id(self) -> Optional[int]:
        return self._platform_id

    @platform_id.setter
    def platform_id(self, value: Optional[int]) -> None:
        self._platform = None
        self._platform_id = value

    @property
    def context_id(self) -> Optional[int]:
        if self._context_id is None and self._context is not None:
            self._context_id = self._context.record_id
        return self._context_id

    @context_id.setter
    def context_id(self, value: Optional[int]) -> None:
        if self._context_id != value:
            self._context = None
            self._context_id = value

    def set_context(self, context: Context) -> None:
        self._context = context
        self._context_id = context.record_id

    def set_platform(self, platform: Platform) -> None:
        self._platform = platform
        self._platform_id = platform.record_id

    async def get_platform(self) -> Platform:
        """Resolve the platform directly, via the context, or by record lookup."""
        if self._platform is None:
            if self._context is not None or self._context_id is not None:
                context = await self.get_context()
                self._platform = await context.get_platform()
            elif self._platform_id is not None and self._data_connector is not None:
                self._platform = await self._data_connector.load_platform(self._platform_id)
            if self._platform is None:
                raise LTIConfigurationError(
                    f"No platform available for resource link {self.lti_resource_link_id}"
                )
        return self._platform

    async def get_context(self) -> Optional[Context]:
        if self._context is None and self._context_id is not None:
            data_connector = await self.get_data_connector()
            self._context = await data_connector.load_context(self._context_id)
        return self._context

    def has_context(self) -> bool:
        return self.context_id is not None or self._context is not None

    async def get_key(self) -> str:
        platform = await self.get_platform()
        return platform.get_key()

    async def get_data_connector(self) -> Any:
        if self._data_connector is None:
            if self._context is not None and self._context.data_connector is not None:
                self._data_connector = self._context.data_connector
            elif self._platform is not None:
                self._data_connector = self._platform.get_data_connector()
            if self._data_connector is None:
                raise LTIConfigurationError("Resource link has no data connector")
        return self._data_connector

    def set_data_connector(self, data_connector: Any) -> None:
        self._data_connector = data_connector

    # Settings

    def get_setting(self, name: str, default: SettingValue = '') -> SettingValue:
        return self._settings.get(name, default)

    def set_setting(self, name: str, value: Optional[SettingValue] = None) -> None:
        """Set a setting value; an empty value removes the setting."""
        if value != self.get_setting(name):
            if value:
                self._settings[name] = value
            else:
                self._settings.pop(name, None)
            self._settings_changed = True

    def get_settings(self) -> Dict[str, SettingValue]:
        return self._settings

    def set_settings(self, settings: Dict[str, SettingValue]) -> None:
        self._settings = dict(settings)

    @property
    def settings_changed(self) -> bool:
        return self._settings_changed

    async def save_settings(self) -> bool:
        """Save the resource link only if its settings have changed."""
        if self._settings_changed:
            return await self.save()
        return True

    def scope_list(self, name: str) -> List[str]:
        """Comma-separated setting as a list."""
        value = self.get_setting(name)
        if isinstance(value, list):
            return value
        return [scope.strip() for scope in value.split(',') if scope.strip()] if value else []

    # Service trace

    def clear_trace(self) -> None:
        self.last_service_request: Optional[HttpMessage] = None
        self.ext_request = ''
        self.ext_request_headers: Dict[str, str] = {}
        self.ext_response = ''
        self.ext_response_headers: Dict[str, str] = {}

    def record_service_request(self, http: Optional[HttpMessage]) -> None:
        """Copy the last request/response of a service call onto the link."""
        if http is None:
            self.clear_trace()
            return
        self.last_service_request = http
        self.ext_request = http.request
        self.ext_request_headers = dict(http.request_headers)
        self.ext_response = http.response
        self.ext_response_headers = dict(http.response_headers)

    # Constructors

    @classmethod
    async def from_platform(
        cls,
        platform: Platform,
        lti_resource_link_id: str,
        temp_id: Optional[str] = None
    ) -> "ResourceLink":
        """Load a resource link of a platform, creating an unsaved one if not found."""
        resource_link = cls()
        resource_link.set_platform(platform)
        resource_link._data_connector = platform.get_data_connector()
        resource_link.lti_resource_link_id = lti_resource_link_id
        if lti_resource_link_id:
            await resource_link._load_with_temp_id(lti_resource_link_id, temp_id)
        return resource_link

    @classmethod
    async def from_context(
        cls,
        context: Context,
        lti_resource_link_id: str,
        temp_id: Optional[str] = None
    ) -> "ResourceLink":
        """Load a resource link of a context, creating an unsaved one if not found."""
        resource_link = cls()
        resource_link.set_context(context)
        resource_link._data_connector = context.get_data_connector()
        resource_link.lti_resource_link_id = lti_resource_link_id
        if lti_resource_link_id:
            await resource_link._load_with_temp_id(lti_resource_link_id, temp_id)
            resource_link.set_context(context)
        return resource_link

    @classmethod
    async def from_record_id(cls, record_id: int, data_connector: Any) -> "ResourceLink":
        resource_link = cls()
        resource_link._data_connector = data_connector
        await resource_link.load(record_id)
        return resource_link

    async def _load_with_temp_id(self, lti_resource_link_id: str, temp_id: Optional[str]) -> None:
        await self.load()
        if self._record_id is None and temp_id:
            self.lti_resource_link_id = temp_id
            await self.load()
            self.lti_resource_link_id = lti_resource_link_id

    def __repr__(self) -> str:
        return f"ResourceLink(lti_resource_link_id={self.lti_resource_link_id!r}, record_id={self._record_id!r})"

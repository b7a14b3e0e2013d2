"""
Registry of platform-family specific service implementations.

A hook supplies an alternative implementation of a service for platforms of
one family (for example a proprietary roster API). Hooks are registered at
configuration time and looked up by hook name and family code.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from ltilink.core.lti_config import ServiceAction, ToolSettingsMode
from ltilink.models.membership import MemberRecord
from ltilink.models.outcome import Outcome, OutcomeValue


logger = logging.getLogger(__name__)

OUTCOMES_SERVICE_HOOK = "outcomes"
MEMBERSHIPS_SERVICE_HOOK = "memberships"
TOOL_SETTINGS_SERVICE_HOOK = "toolsettings"


class ResourceLinkApiHook:
    """
    Base class for resource link service hooks.

    Every service method returns ``False`` when the hook does not support it.
    """

    def __init__(self, resource_link: Any):
        self.resource_link = resource_link

    def is_configured(self) -> bool:
        """Check whether the hook can be used for this resource link."""
        return True

    async def do_outcomes_service(
        self,
        action: ServiceAction,
        outcome: Outcome,
        user_result: Any
    ) -> Union[OutcomeValue, bool]:
        """Return the outcome value for a read, True for a write/delete, or False."""
        return False

    async def get_memberships(self, with_groups: bool = False) -> Union[List[MemberRecord], bool]:
        return False

    async def get_tool_settings(
        self,
        mode: Optional[ToolSettingsMode] = None,
        simple: bool = True
    ) -> Union[Dict[str, Any], bool]:
        return False

    async def set_tool_settings(self, settings: Dict[str, Any]) -> bool:
        return False


class ApiHookRegistry:
    """Hook classes keyed by ``(hook_name, family_code)``."""

    def __init__(self):
        self._hooks: Dict[Tuple[str, str], Type[ResourceLinkApiHook]] = {}

    def register(self, hook_name: str, family_code: str, hook_class: Type[ResourceLinkApiHook]) -> None:
        self._hooks[(hook_name, family_code)] = hook_class
        logger.info(f"Registered {hook_name} hook for platform family {family_code}: {hook_class.__name__}")

    def unregister(self, hook_name: str, family_code: str) -> bool:
        return self._hooks.pop((hook_name, family_code), None) is not None

    def get_hook(self, hook_name: str, family_code: str) -> Optional[Type[ResourceLinkApiHook]]:
        return self._hooks.get((hook_name, family_code))

    def has_configured_hook(self, hook_name: str, family_code: str, resource_link: Any) -> bool:
        """Check whether a hook is registered and configured for the resource link."""
        hook_class = self.get_hook(hook_name, family_code)
        if hook_class is None:
            return False
        return hook_class(resource_link).is_configured()

    def create_hook(self, hook_name: str, family_code: str, resource_link: Any) -> Optional[ResourceLinkApiHook]:
        hook_class = self.get_hook(hook_name, family_code)
        return hook_class(resource_link) if hook_class else None

    def clear(self) -> None:
        self._hooks.clear()


# Global hook registry
api_hook_registry = ApiHookRegistry()

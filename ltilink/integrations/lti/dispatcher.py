"""
Service capability resolution and dispatch for a resource link.

For each service family the dispatcher inspects the launch settings of the
resource link (and its context) to decide which protocol generation to use,
trying the richest available one first and falling back to older protocols
and finally to a registered platform-family hook.
"""

import logging
from typing import Any, Dict, List, Optional, Union
from xml.sax.saxutils import escape

from ltilink.core.lti_config import (
    MEDIA_TYPE_MEMBERSHIPS_NRPS, MEDIA_TYPE_MEMBERSHIPS_V1, SCOPE_EXT_MEMBERSHIPS,
    SCOPE_EXT_OUTCOMES, SCOPE_EXT_SETTING, SCOPE_LINEITEM, SCOPE_LINEITEM_READONLY,
    SCOPE_RESULT, SCOPE_SCORE, SETTING_ACS_URL, SETTING_AGS_SCOPES,
    SETTING_CONTEXT_GROUP_SETS_URL, SETTING_CONTEXT_GROUPS_URL,
    SETTING_CONTEXT_MEMBERSHIPS_URL, SETTING_CONTEXT_MEMBERSHIPS_V2_URL,
    SETTING_EXT_MEMBERSHIPS_ID, SETTING_EXT_MEMBERSHIPS_URL, SETTING_EXT_OUTCOME_URL,
    SETTING_EXT_TOOL_SETTING, SETTING_EXT_TOOL_SETTING_ID, SETTING_EXT_TOOL_SETTING_URL,
    SETTING_LINEITEM_URL, SETTING_LINEITEMS_URL, SETTING_LINK_MEMBERSHIPS_URL,
    SETTING_LINK_SETTING_URL, SETTING_OUTCOME_DATA_VALUES, SETTING_OUTCOME_SERVICE_URL,
    SETTING_RESULT_VALUE_TYPES, OutcomeType, ServiceAction, ToolSettingsMode
)
from ltilink.integrations.lti.advantage import (
    AssessmentControlService, GroupsService, LineItemService, MembershipService,
    ResultService, ScoreService, ToolSettingsService
)
from ltilink.integrations.lti.api_hooks import (
    MEMBERSHIPS_SERVICE_HOOK, OUTCOMES_SERVICE_HOOK, TOOL_SETTINGS_SERVICE_HOOK,
    ApiHookRegistry, api_hook_registry
)
from ltilink.integrations.lti.outcome_converter import check_value_type, supported_types_from_setting
from ltilink.integrations.lti.transport import LTITransport
from ltilink.integrations.lti.xml_normalizer import XmlNode, node_get, node_list
from ltilink.models.line_item import AssessmentControlAction, LineItem
from ltilink.models.membership import GroupRecord, GroupSetRecord, MemberRecord
from ltilink.models.outcome import Outcome
from ltilink.models.resource_link import ResourceLink
from ltilink.models.user_result import UserResult
from ltilink.services.roster_sync import RosterSyncService


logger = logging.getLogger(__name__)

POX_OPERATIONS = {
    ServiceAction.READ: 'readResult',
    ServiceAction.WRITE: 'replaceResult',
    ServiceAction.DELETE: 'deleteResult',
}

EXT_OUTCOME_MESSAGES = {
    ServiceAction.READ: 'basic-lis-readresult',
    ServiceAction.WRITE: 'basic-lis-updateresult',
    ServiceAction.DELETE: 'basic-lis-deleteresult',
}

EXT_SETTING_MESSAGES = {
    ServiceAction.READ: 'basic-lti-loadsetting',
    ServiceAction.WRITE: 'basic-lti-savesetting',
    ServiceAction.DELETE: 'basic-lti-deletesetting',
}


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ''


class ServiceDispatcher:
    """
    Dispatches service operations for one resource link.

    Public operations never raise for unavailable services, transport
    failures or malformed responses; they return ``False`` (or an empty
    result) and leave the last request/response on the resource link.
    """

    def __init__(
        self,
        resource_link: ResourceLink,
        transport: LTITransport,
        hook_registry: Optional[ApiHookRegistry] = None,
        roster_service: Optional[RosterSyncService] = None
    ):
        self.resource_link = resource_link
        self.transport = transport
        self.hook_registry = hook_registry or api_hook_registry
        self.roster_service = roster_service or RosterSyncService()

    # Helpers

    def _record(self) -> None:
        self.resource_link.record_service_request(self.transport.last_message)

    async def _family_code(self) -> str:
        platform = await self.resource_link.get_platform()
        return platform.get_family_code()

    async def _has_hook(self, hook_name: str) -> bool:
        return self.hook_registry.has_configured_hook(hook_name, await self._family_code(), self.resource_link)

    async def _hook(self, hook_name: str):
        return self.hook_registry.create_hook(hook_name, await self._family_code(), self.resource_link)

    @staticmethod
    def _has_ags_scope(resource_link: ResourceLink, url_setting: str, *scopes: str) -> bool:
        """Check for a declared AGS URL and any of the given scopes."""
        declared = resource_link.scope_list(SETTING_AGS_SCOPES)
        return bool(resource_link.get_setting(url_setting)) and any(scope in declared for scope in scopes)

    # Availability

    async def has_outcomes_service(self) -> bool:
        link = self.resource_link
        has = bool(link.get_setting(SETTING_EXT_OUTCOME_URL) or link.get_setting(SETTING_OUTCOME_SERVICE_URL))
        if not has:
            has = self._has_ags_scope(link, SETTING_LINEITEM_URL, SCOPE_SCORE) and \
                self._has_ags_scope(link, SETTING_LINEITEM_URL, SCOPE_RESULT)
        if not has:
            has = await self._has_hook(OUTCOMES_SERVICE_HOOK)
        return has

    async def has_memberships_service(self) -> bool:
        link = self.resource_link
        has = False
        context = await link.get_context() if link.has_context() else None
        if context is not None:
            has = bool(context.get_setting(SETTING_CONTEXT_MEMBERSHIPS_URL) or
                       context.get_setting(SETTING_CONTEXT_MEMBERSHIPS_V2_URL))
        if not has:
            has = bool(link.get_setting(SETTING_LINK_MEMBERSHIPS_URL))
        if not has:
            has = bool(link.get_setting(SETTING_EXT_MEMBERSHIPS_URL))
        if not has:
            has = await self._has_hook(MEMBERSHIPS_SERVICE_HOOK)
        return has

    async def has_setting_service(self) -> bool:
        return bool(self.resource_link.get_setting(SETTING_EXT_TOOL_SETTING_URL))

    async def has_tool_settings_service(self) -> bool:
        has = bool(self.resource_link.get_setting(SETTING_LINK_SETTING_URL))
        if not has:
            has = await self._has_hook(TOOL_SETTINGS_SERVICE_HOOK)
        return has

    async def has_line_item_service(self) -> bool:
        return self._has_ags_scope(self.resource_link, SETTING_LINEITEMS_URL, SCOPE_LINEITEM, SCOPE_LINEITEM_READONLY)

    async def has_score_service(self) -> bool:
        return self._has_ags_scope(self.resource_link, SETTING_LINEITEM_URL, SCOPE_SCORE)

    async def has_result_service(self) -> bool:
        return self._has_ags_scope(self.resource_link, SETTING_LINEITEM_URL, SCOPE_RESULT)

    async def has_assessment_control_service(self) -> bool:
        return bool(self.resource_link.get_setting(SETTING_ACS_URL))

    # Outcomes

    async def do_outcomes_service(
        self,
        action: ServiceAction,
        outcome: Outcome,
        user_result: UserResult
    ) -> bool:
        """
        Read, write or delete a user's grade.

        Tiers are tried in order: Assignment and Grade Services, LTI 1.1
        Basic Outcomes, the outcomes extension, then a platform-family hook.
        Settings are taken from the user's own resource link, which differs
        from this one when the link is shared.

        Returns:
            True if one tier processed the request
        """
        self.resource_link.clear_trace()
        source = user_result.get_resource_link() or self.resource_link
        if action == ServiceAction.DELETE:
            outcome.reset_for_delete()

        ok = await self._do_ags_outcome(action, outcome, user_result, source)
        if not ok and outcome.value is None:
            outcome.value = ''
        if not ok and source.get_setting(SETTING_OUTCOME_SERVICE_URL):
            ok = await self._do_pox_outcome(action, outcome, user_result, source)
        if not ok and source.get_setting(SETTING_EXT_OUTCOME_URL):
            ok = await self._do_ext_outcome(action, outcome, user_result, source)
        if not ok and await self._has_hook(OUTCOMES_SERVICE_HOOK):
            hook = await self._hook(OUTCOMES_SERVICE_HOOK)
            response = await hook.do_outcomes_service(action, outcome, user_result)
            if response is not False:
                ok = True
                if action == ServiceAction.READ:
                    outcome.value = response

        if not ok:
            logger.warning(
                f"Outcomes {action.value} failed for user {user_result.lti_user_id} "
                f"on resource link {self.resource_link.lti_resource_link_id}"
            )
        return ok

    async def _do_ags_outcome(
        self,
        action: ServiceAction,
        outcome: Outcome,
        user_result: UserResult,
        source: ResourceLink
    ) -> bool:
        url = source.get_setting(SETTING_LINEITEM_URL)
        if not url:
            return False
        platform = await self.resource_link.get_platform()

        if action == ServiceAction.READ:
            if outcome.type != OutcomeType.DECIMAL or not self._has_ags_scope(source, SETTING_LINEITEM_URL, SCOPE_RESULT):
                return False
            result = await ResultService(self.transport, platform, url).get(user_result)
            self._record()
            if result is None:
                return False
            outcome.assign(result)
            return True

        if not self._has_ags_scope(source, SETTING_LINEITEM_URL, SCOPE_SCORE):
            return False
        if action == ServiceAction.WRITE:
            if not check_value_type(outcome, [OutcomeType.DECIMAL]):
                return False
        elif action != ServiceAction.DELETE:
            return False

        ok = await ScoreService(self.transport, platform, url).submit(outcome, user_result)
        self._record()
        return ok

    @staticmethod
    def _result_data(comment: Optional[str], accepted: str) -> str:
        """``resultData`` element for a comment, in the first accepted data type that fits."""
        comment = (comment or '').strip()
        if not comment or not accepted:
            return ''
        data_types = [t.strip() for t in accepted.split(',') if t.strip()]
        data_type = ''
        if len(data_types) == 1:
            data_type = data_types[0]
        elif data_types:
            is_url = comment.startswith(('http://', 'https://'))
            if is_url and 'ltiLaunchUrl' in data_types:
                data_type = 'ltiLaunchUrl'
            elif is_url and 'url' in data_types:
                data_type = 'url'
            elif 'text' in data_types:
                data_type = 'text'
        if not data_type:
            return ''
        return (
            '\n          <resultData>\n'
            f'            <{data_type}>{escape(comment)}</{data_type}>\n'
            '          </resultData>'
        )

    async def _do_pox_outcome(
        self,
        action: ServiceAction,
        outcome: Outcome,
        user_result: UserResult,
        source: ResourceLink
    ) -> bool:
        if action == ServiceAction.READ and outcome.type != OutcomeType.DECIMAL:
            return False
        if action == ServiceAction.WRITE and not check_value_type(outcome, [OutcomeType.DECIMAL]):
            return False
        operation = POX_OPERATIONS.get(action)
        if not operation:
            return False

        result_xml = ''
        if action == ServiceAction.WRITE:
            value = outcome.scaled_value()
            result_data = self._result_data(outcome.comment, source.get_setting(SETTING_OUTCOME_DATA_VALUES))
            result_xml = (
                '\n        <result>\n'
                '          <resultScore>\n'
                f'            <language>{escape(outcome.language or "")}</language>\n'
                f'            <textString>{escape("" if value is None else str(value))}</textString>\n'
                f'          </resultScore>{result_data}\n'
                '        </result>'
            )
        record_xml = (
            '      <resultRecord>\n'
            '        <sourcedGUID>\n'
            f'          <sourcedId>{escape(user_result.lti_result_sourced_id or "")}</sourcedId>\n'
            f'        </sourcedGUID>{result_xml}\n'
            '      </resultRecord>'
        )

        platform = await self.resource_link.get_platform()
        sent = await self.transport.send_pox_request(platform, operation, source.get_setting(SETTING_OUTCOME_SERVICE_URL), record_xml)
        self._record()
        if not sent:
            return False

        if action == ServiceAction.READ:
            text = node_get(
                self.transport.last_nodes, 'imsx_POXBody', f'{operation}Response', 'result', 'resultScore', 'textString'
            )
            if text is None:
                return False
            outcome.value = text if isinstance(text, str) and text else None
        return True

    async def _do_ext_outcome(
        self,
        action: ServiceAction,
        outcome: Outcome,
        user_result: UserResult,
        source: ResourceLink
    ) -> bool:
        if action == ServiceAction.READ and outcome.type != OutcomeType.DECIMAL:
            return False
        if action == ServiceAction.WRITE:
            supported = supported_types_from_setting(source.get_setting(SETTING_RESULT_VALUE_TYPES))
            if not check_value_type(outcome, supported):
                return False
        message_type = EXT_OUTCOME_MESSAGES.get(action)
        if not message_type:
            return False

        value = outcome.scaled_value() if outcome.type == OutcomeType.DECIMAL else outcome.value
        params: Dict[str, Any] = {
            'sourcedid': user_result.lti_result_sourced_id,
            'result_resultscore_textstring': '' if value is None else value,
        }
        optional = {
            'result_resultscore_language': outcome.language,
            'result_statusofresult': outcome.status,
            'result_date': outcome.date,
            'result_resultvaluesourcedid': outcome.type.value if outcome.type else None,
            'result_datasource': outcome.data_source,
        }
        params.update({k: v for k, v in optional.items() if v})

        platform = await self.resource_link.get_platform()
        sent = await self.transport.send_ext_request(
            platform, message_type, source.get_setting(SETTING_EXT_OUTCOME_URL), params, SCOPE_EXT_OUTCOMES
        )
        self._record()
        if not sent:
            return False

        if action == ServiceAction.READ:
            text = node_get(self.transport.last_nodes, 'result', 'resultscore', 'textstring')
            if text is not None:
                outcome.value = text if isinstance(text, str) else None
        return True

    # Settings

    async def do_setting_service(
        self,
        action: ServiceAction,
        value: Optional[str] = None
    ) -> Union[str, bool]:
        """
        Read, save or delete the tool setting of the setting extension service.

        Returns:
            The setting value for a read, True for a successful save or
            delete, otherwise False
        """
        self.resource_link.clear_trace()
        message_type = EXT_SETTING_MESSAGES.get(action)
        if not message_type:
            return False

        value = value or ''
        params = {
            'id': self.resource_link.get_setting(SETTING_EXT_TOOL_SETTING_ID),
            'setting': value,
        }
        platform = await self.resource_link.get_platform()
        ok = await self.transport.send_ext_request(
            platform, message_type, self.resource_link.get_setting(SETTING_EXT_TOOL_SETTING_URL), params, SCOPE_EXT_SETTING
        )
        self._record()
        if not ok:
            return False

        if action == ServiceAction.READ:
            return _text(node_get(self.transport.last_nodes, 'setting', 'value'))
        if action == ServiceAction.WRITE:
            self.resource_link.set_setting(SETTING_EXT_TOOL_SETTING, value)
            await self.resource_link.save_settings()
        return True

    async def get_tool_settings(
        self,
        mode: Optional[ToolSettingsMode] = None,
        simple: bool = True
    ) -> Union[Dict[str, Any], bool]:
        """Read settings from the Tool Settings service, or from a hook."""
        self.resource_link.clear_trace()
        settings: Union[Dict[str, Any], bool] = {}
        ok = False
        url = self.resource_link.get_setting(SETTING_LINK_SETTING_URL)
        if url:
            platform = await self.resource_link.get_platform()
            settings = await ToolSettingsService(self.transport, platform, url, simple).get(mode)
            self._record()
            ok = settings is not False
        if not ok and await self._has_hook(TOOL_SETTINGS_SERVICE_HOOK):
            hook = await self._hook(TOOL_SETTINGS_SERVICE_HOOK)
            settings = await hook.get_tool_settings(mode, simple)
        return settings

    async def set_tool_settings(self, settings: Optional[Dict[str, Any]] = None) -> bool:
        """Write settings to the Tool Settings service, or to a hook."""
        self.resource_link.clear_trace()
        settings = settings or {}
        ok = False
        url = self.resource_link.get_setting(SETTING_LINK_SETTING_URL)
        if url:
            platform = await self.resource_link.get_platform()
            ok = await ToolSettingsService(self.transport, platform, url).set(settings)
            self._record()
        if not ok and await self._has_hook(TOOL_SETTINGS_SERVICE_HOOK):
            hook = await self._hook(TOOL_SETTINGS_SERVICE_HOOK)
            ok = await hook.set_tool_settings(settings)
        return ok

    # Memberships

    async def get_memberships(self, with_groups: bool = False) -> Union[List[UserResult], bool]:
        """
        Fetch the roster and reconcile it with the persisted user results.

        The context roster service is preferred when it can satisfy the
        request (a groups service is also needed when groups are requested),
        then the resource link roster service, the memberships extension and
        finally a hook. Nothing is persisted when every source fails.

        Args:
            with_groups: Also request group membership

        Returns:
            List of user results, or False if no roster could be fetched
        """
        self.resource_link.clear_trace()
        link = self.resource_link
        context = await link.get_context() if link.has_context() else None
        context_url = context.get_setting(SETTING_CONTEXT_MEMBERSHIPS_URL) if context else ''
        context_v2_url = context.get_setting(SETTING_CONTEXT_MEMBERSHIPS_V2_URL) if context else ''
        groups_url = context.get_setting(SETTING_CONTEXT_GROUPS_URL) if context else ''
        has_context_service = bool(context_url or context_v2_url)
        has_link_service = bool(link.get_setting(SETTING_LINK_MEMBERSHIPS_URL))
        has_ext_service = bool(link.get_setting(SETTING_EXT_MEMBERSHIPS_URL))
        has_hook = await self._has_hook(MEMBERSHIPS_SERVICE_HOOK)

        members: Union[List[MemberRecord], bool] = False
        if has_context_service and (not with_groups or groups_url or (not has_ext_service and not has_hook)):
            if context_v2_url:
                members = await self._fetch_members(context_v2_url, MEDIA_TYPE_MEMBERSHIPS_NRPS, with_groups, context)
            else:
                members = await self._fetch_members(context_url, MEDIA_TYPE_MEMBERSHIPS_V1, with_groups, context)
        if members is False and has_link_service:
            members = await self._fetch_members(
                link.get_setting(SETTING_LINK_MEMBERSHIPS_URL), MEDIA_TYPE_MEMBERSHIPS_V1, with_groups, context,
                link_level=True
            )
        if members is False and has_ext_service:
            members = await self._fetch_ext_members(with_groups)
        if members is False and has_hook:
            hook = await self._hook(MEMBERSHIPS_SERVICE_HOOK)
            members = await hook.get_memberships(with_groups)

        if members is False:
            logger.warning(f"No roster could be fetched for resource link {link.lti_resource_link_id}")
            return False
        return await self.roster_service.reconcile(link, members, with_groups)

    async def _fetch_members(
        self,
        url: str,
        media_type: str,
        with_groups: bool,
        context: Any,
        link_level: bool = False
    ) -> Union[List[MemberRecord], bool]:
        platform = await self.resource_link.get_platform()
        service = MembershipService(
            self.transport,
            platform,
            url,
            media_type,
            None if link_level else self.resource_link.lti_resource_link_id
        )
        if not with_groups:
            members = await service.get()
        else:
            groups_url = context.get_setting(SETTING_CONTEXT_GROUPS_URL) if context else ''
            groups_service = GroupsService(self.transport, platform, groups_url) if groups_url else None
            group_sets_url = context.get_setting(SETTING_CONTEXT_GROUP_SETS_URL) if context else None
            members = await service.get_with_groups(groups_service, group_sets_url)
        self._record()
        return members

    async def _fetch_ext_members(self, with_groups: bool) -> Union[List[MemberRecord], bool]:
        link = self.resource_link
        platform = await link.get_platform()
        url = link.get_setting(SETTING_EXT_MEMBERSHIPS_URL)
        params = {'id': link.get_setting(SETTING_EXT_MEMBERSHIPS_ID)}

        ok = False
        if with_groups:
            ok = await self.transport.send_ext_request(
                platform, 'basic-lis-readmembershipsforcontextwithgroups', url, params, SCOPE_EXT_MEMBERSHIPS
            )
        if not ok:
            ok = await self.transport.send_ext_request(
                platform, 'basic-lis-readmembershipsforcontext', url, params, SCOPE_EXT_MEMBERSHIPS
            )
        self._record()
        if not ok:
            return False
        return self.parse_ext_memberships(self.transport.last_nodes)

    @staticmethod
    def parse_ext_memberships(nodes: XmlNode) -> Union[List[MemberRecord], bool]:
        """Members of a memberships extension response."""
        memberships = node_get(nodes, 'memberships')
        if memberships is None:
            memberships = node_get(nodes, 'members')
        if memberships is None:
            return False

        members = []
        for member in node_list(node_get(memberships, 'member')):
            user_id = _text(node_get(member, 'user_id'))
            if not user_id:
                logger.warning("Skipping memberships extension member without user_id")
                continue
            groups = []
            for group in node_list(node_get(member, 'groups', 'group')):
                group_set = node_get(group, 'set')
                groups.append(GroupRecord(
                    id=_text(node_get(group, 'id')),
                    title=_text(node_get(group, 'title')),
                    group_set=GroupSetRecord(
                        id=_text(node_get(group_set, 'id')),
                        title=_text(node_get(group_set, 'title'))
                    ) if isinstance(group_set, dict) else None
                ))
            members.append(MemberRecord(
                user_id=user_id,
                given_name=_text(node_get(member, 'person_name_given')),
                family_name=_text(node_get(member, 'person_name_family')),
                name=_text(node_get(member, 'person_name_full')),
                email=_text(node_get(member, 'person_contact_email_primary')),
                sourced_id=_text(node_get(member, 'person_sourcedid')) or None,
                roles=_text(node_get(member, 'roles')),
                groups=groups,
                lti_result_sourced_id=_text(node_get(member, 'lis_result_sourcedid')) or None,
            ))
        return members

    # Line items, results and assessment control

    async def get_line_items(
        self,
        resource_id: Optional[str] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Union[List[LineItem], bool]:
        self.resource_link.clear_trace()
        url = self.resource_link.get_setting(SETTING_LINEITEMS_URL)
        if not url:
            return False
        platform = await self.resource_link.get_platform()
        line_items = await LineItemService(self.transport, platform, url).get_all(
            self.resource_link.lti_resource_link_id, resource_id, tag, limit
        )
        self._record()
        return line_items

    async def create_line_item(self, line_item: LineItem) -> bool:
        self.resource_link.clear_trace()
        url = self.resource_link.get_setting(SETTING_LINEITEMS_URL)
        if not url:
            return False
        line_item.lti_resource_link_id = self.resource_link.lti_resource_link_id
        platform = await self.resource_link.get_platform()
        ok = await LineItemService(self.transport, platform, url).create(line_item)
        self._record()
        return ok

    async def get_outcomes(self, limit: Optional[int] = None) -> Union[List[Outcome], bool]:
        """Read the results of all users for the resource link's line item."""
        self.resource_link.clear_trace()
        url = self.resource_link.get_setting(SETTING_LINEITEM_URL)
        if not url:
            return False
        platform = await self.resource_link.get_platform()
        outcomes = await ResultService(self.transport, platform, url).get_all(limit)
        self._record()
        return outcomes

    async def do_assessment_control_action(
        self,
        action: AssessmentControlAction,
        user_result: UserResult,
        attempt_number: int
    ) -> Union[str, bool]:
        self.resource_link.clear_trace()
        url = self.resource_link.get_setting(SETTING_ACS_URL)
        if not url:
            return False
        platform = await self.resource_link.get_platform()
        status = await AssessmentControlService(self.transport, platform, url).submit_action(
            action, user_result, attempt_number, self.resource_link.lti_resource_link_id
        )
        self._record()
        return status

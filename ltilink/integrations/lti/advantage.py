"""
LTI Advantage REST service clients.

Each client wraps one service endpoint, sends its requests through the
shared ``LTITransport`` and maps JSON responses onto domain objects.
Failures are reported as ``False`` (or ``None`` for single-object reads);
the last HTTP exchange is available from ``http_message``.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Union
from urllib.parse import urlencode, urlsplit, urlunsplit

from ltilink.core.config import settings
from ltilink.core.lti_config import (
    MEDIA_TYPE_ASSESSMENT_CONTROL, MEDIA_TYPE_GROUP_SETS, MEDIA_TYPE_GROUPS,
    MEDIA_TYPE_LINE_ITEM, MEDIA_TYPE_LINE_ITEMS, MEDIA_TYPE_MEMBERSHIPS_NRPS,
    MEDIA_TYPE_RESULTS, MEDIA_TYPE_SCORE, MEDIA_TYPE_TOOL_SETTINGS,
    MEDIA_TYPE_TOOL_SETTINGS_SIMPLE, SCOPE_ASSESSMENT_CONTROL, SCOPE_GROUPS,
    SCOPE_LINEITEM, SCOPE_LINEITEM_READONLY, SCOPE_MEMBERSHIPS, SCOPE_RESULT,
    SCOPE_SCORE, SCOPE_TOOL_SETTINGS, ToolSettingsMode
)
from ltilink.integrations.lti.error_handler import LTIResponseParseError, lti_error_handler
from ltilink.integrations.lti.transport import LTITransport
from ltilink.models.http_message import HttpMessage
from ltilink.models.line_item import AssessmentControlAction, LineItem
from ltilink.models.membership import GroupRecord, GroupSetRecord, MemberRecord
from ltilink.models.outcome import Outcome
from ltilink.models.user_result import UserResult


logger = logging.getLogger(__name__)

LINK_NEXT_PATTERN = re.compile(r'<([^>]+)>\s*;\s*rel="?next"?', re.IGNORECASE)
BASIC_OUTCOME_CLAIM = "https://purl.imsglobal.org/spec/lti-bo/claim/basicoutcome"


def endpoint_with_path(endpoint: str, suffix: str) -> str:
    """Append a path segment to an endpoint, keeping its query string."""
    parts = urlsplit(endpoint)
    path = parts.path.rstrip('/') + suffix
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def endpoint_with_query(endpoint: str, params: Dict[str, Any]) -> str:
    """Add query parameters to an endpoint, ignoring empty values."""
    params = {k: v for k, v in params.items() if v is not None and v != ''}
    if not params:
        return endpoint
    separator = '&' if '?' in endpoint else '?'
    return f"{endpoint}{separator}{urlencode(params)}"


def next_page_url(headers: Dict[str, str]) -> Optional[str]:
    """URL of the next page from a ``Link`` response header."""
    link = next((v for k, v in headers.items() if k.lower() == 'link'), '')
    match = LINK_NEXT_PATTERN.search(link or '')
    return match.group(1) if match else None


class AdvantageService:
    """Base class for a single Advantage service endpoint."""

    scope: str = ''

    def __init__(self, transport: LTITransport, platform: Any, endpoint: str):
        self.transport = transport
        self.platform = platform
        self.endpoint = endpoint

    @property
    def http_message(self) -> Optional[HttpMessage]:
        return self.transport.last_message

    async def _send(
        self,
        url: str,
        method: str = 'GET',
        body: Optional[Dict[str, Any]] = None,
        content_type: Optional[str] = None,
        accept: Optional[str] = None,
        scope: Optional[str] = None
    ) -> bool:
        data = json.dumps(body) if body is not None else None
        return await self.transport.send_service_request(
            self.platform,
            url,
            scope or self.scope,
            method=method,
            body=data,
            content_type=content_type,
            accept=accept
        )

    def _json(self) -> Any:
        """Decode the JSON body of the last response, or None if it is not valid JSON."""
        http = self.http_message
        if http is None:
            return None
        try:
            return json.loads(http.response) if http.response else {}
        except ValueError as e:
            lti_error_handler.log_error(LTIResponseParseError(
                f"Invalid JSON in service response from {http.url}: {e}",
                platform_key=self.platform.get_key(),
                operation_type=type(self).__name__,
                original_exception=e
            ))
            return None

    async def _fetch_pages(
        self,
        url: str,
        accept: str,
        scope: Optional[str] = None
    ) -> Union[List[Any], bool]:
        """
        Decoded JSON body of every page of a paged collection.

        ``Link: rel=next`` headers are followed until none is returned. A
        next page that was already fetched, or more than ``LTI_MAX_PAGES``
        pages, fails the whole read.
        """
        pages: List[Any] = []
        visited: Set[str] = set()
        while url:
            if url in visited or len(visited) >= settings.LTI_MAX_PAGES:
                lti_error_handler.log_error(LTIResponseParseError(
                    f"Paging stopped at {url} after {len(visited)} pages",
                    platform_key=self.platform.get_key(),
                    operation_type=type(self).__name__
                ))
                return False
            visited.add(url)
            if not await self._send(url, accept=accept, scope=scope):
                return False
            data = self._json()
            if data is None:
                return False
            pages.append(data)
            url = next_page_url(self.http_message.response_headers)
        return pages

    async def _get_pages(self, url: str, accept: str, key: Optional[str]) -> Union[List[Any], bool]:
        """Items of every page of a paged collection."""
        pages = await self._fetch_pages(url, accept)
        if pages is False:
            return False
        items: List[Any] = []
        for data in pages:
            if key:
                page = data.get(key, []) if isinstance(data, dict) else None
            else:
                page = data
            if not isinstance(page, list):
                return False
            items.extend(page)
        return items


class ScoreService(AdvantageService):
    """Score publish service of a line item."""

    scope = SCOPE_SCORE

    async def submit(self, outcome: Outcome, user_result: UserResult) -> bool:
        """Post a score for a user."""
        score: Dict[str, Any] = {
            'userId': user_result.lti_user_id,
            'activityProgress': outcome.activity_progress or 'Completed',
            'gradingProgress': outcome.grading_progress or 'FullyGraded',
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
        if outcome.value is not None and outcome.value != '':
            try:
                score['scoreGiven'] = float(outcome.value)
            except (TypeError, ValueError):
                logger.warning(f"Score for {user_result.lti_user_id} is not numeric: {outcome.value!r}")
                self.transport.clear_trace()
                return False
            score['scoreMaximum'] = outcome.points_possible
        if outcome.comment:
            score['comment'] = outcome.comment

        return await self._send(
            endpoint_with_path(self.endpoint, '/scores'),
            method='POST',
            body=score,
            content_type=MEDIA_TYPE_SCORE
        )


class ResultService(AdvantageService):
    """Result service of a line item."""

    scope = SCOPE_RESULT

    @staticmethod
    def outcome_from_result(result: Dict[str, Any]) -> Outcome:
        return Outcome(
            value=result.get('resultScore'),
            points_possible=result.get('resultMaximum') or 1,
            comment=result.get('comment'),
        )

    async def get(self, user_result: UserResult) -> Optional[Outcome]:
        """Read the result of a single user."""
        url = endpoint_with_query(
            endpoint_with_path(self.endpoint, '/results'),
            {'user_id': user_result.lti_user_id}
        )
        if not await self._send(url, accept=MEDIA_TYPE_RESULTS):
            return None
        data = self._json()
        if not isinstance(data, list):
            return None
        if not data:
            return Outcome(value=None)
        return self.outcome_from_result(data[0])

    async def get_all(self, limit: Optional[int] = None) -> Union[List[Outcome], bool]:
        """Read the results of every user."""
        url = endpoint_with_query(endpoint_with_path(self.endpoint, '/results'), {'limit': limit})
        results = await self._get_pages(url, MEDIA_TYPE_RESULTS, None)
        if results is False:
            return False
        outcomes = []
        for result in results:
            outcome = self.outcome_from_result(result)
            outcome.data_source = result.get('userId')
            outcomes.append(outcome)
        return outcomes


class LineItemService(AdvantageService):
    """Line item container service of a context."""

    scope = SCOPE_LINEITEM

    async def get_all(
        self,
        lti_resource_link_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Union[List[LineItem], bool]:
        url = endpoint_with_query(self.endpoint, {
            'resource_link_id': lti_resource_link_id,
            'resource_id': resource_id,
            'tag': tag,
            'limit': limit,
        })
        pages = await self._fetch_pages(url, MEDIA_TYPE_LINE_ITEMS, SCOPE_LINEITEM_READONLY)
        if pages is False or not all(isinstance(page, list) for page in pages):
            return False
        return [LineItem.from_json(item) for page in pages for item in page]

    async def create(self, line_item: LineItem) -> bool:
        """Create a line item, setting its endpoint from the response."""
        ok = await self._send(
            self.endpoint,
            method='POST',
            body=line_item.to_json(),
            content_type=MEDIA_TYPE_LINE_ITEM,
            accept=MEDIA_TYPE_LINE_ITEM
        )
        if ok:
            data = self._json()
            if isinstance(data, dict) and data.get('id'):
                line_item.endpoint = data['id']
        return ok


class GroupsService(AdvantageService):
    """Context groups and group sets service."""

    scope = SCOPE_GROUPS

    async def get_group_sets(self, url: Optional[str]) -> Union[Dict[str, GroupSetRecord], bool]:
        if not url:
            return {}
        sets = await self._get_pages(url, MEDIA_TYPE_GROUP_SETS, 'sets')
        if sets is False:
            return False
        return {
            str(s['id']): GroupSetRecord(id=str(s['id']), title=s.get('name', ''))
            for s in sets if s.get('id') is not None
        }

    async def get_groups(self, group_sets_url: Optional[str] = None) -> Union[Dict[str, GroupRecord], bool]:
        """Groups of the context keyed by group ID, with their group set when one is declared."""
        group_sets = await self.get_group_sets(group_sets_url)
        if group_sets is False:
            return False
        groups = await self._get_pages(self.endpoint, MEDIA_TYPE_GROUPS, 'groups')
        if groups is False:
            return False

        records: Dict[str, GroupRecord] = {}
        for group in groups:
            if group.get('id') is None:
                continue
            group_set = None
            set_ids = group.get('set_ids') or []
            if set_ids:
                set_id = str(set_ids[0])
                group_set = group_sets.get(set_id) or GroupSetRecord(id=set_id)
            records[str(group['id'])] = GroupRecord(
                id=str(group['id']),
                title=group.get('name', ''),
                group_set=group_set
            )
        return records


class MembershipService(AdvantageService):
    """
    Names and role provisioning service of a context or resource link.

    Both the NRPS container format and the older LIS v2 membership container
    are understood.
    """

    scope = SCOPE_MEMBERSHIPS

    def __init__(
        self,
        transport: LTITransport,
        platform: Any,
        endpoint: str,
        media_type: str = MEDIA_TYPE_MEMBERSHIPS_NRPS,
        lti_resource_link_id: Optional[str] = None
    ):
        super().__init__(transport, platform, endpoint)
        self.media_type = media_type
        self.lti_resource_link_id = lti_resource_link_id

    async def get(
        self,
        role: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Union[List[MemberRecord], bool]:
        url = endpoint_with_query(self.endpoint, {
            'rlid': self.lti_resource_link_id,
            'role': role,
            'limit': limit,
        })
        pages = await self._fetch_pages(url, self.media_type)
        if pages is False:
            return False
        members: List[MemberRecord] = []
        for data in pages:
            if not isinstance(data, dict):
                return False
            try:
                if self.media_type == MEDIA_TYPE_MEMBERSHIPS_NRPS:
                    members.extend(self.parse_nrps(data))
                else:
                    members.extend(self.parse_lis_v2(data))
            except (ValueError, TypeError, AttributeError) as e:
                lti_error_handler.log_error(LTIResponseParseError(
                    f"Unexpected membership container from {self.endpoint}: {e}",
                    platform_key=self.platform.get_key(),
                    operation_type='memberships',
                    original_exception=e
                ))
                return False
        return members

    async def get_with_groups(
        self,
        groups_service: Optional[GroupsService],
        group_sets_url: Optional[str] = None,
        role: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Union[List[MemberRecord], bool]:
        """Fetch members and resolve their group enrollments."""
        members = await self.get(role, limit)
        if members is False or groups_service is None:
            return members

        http = self.http_message
        groups = await groups_service.get_groups(group_sets_url)
        self.transport.last_message = http
        if groups is False:
            logger.warning(f"Groups could not be read from {groups_service.endpoint}")
            return members

        for member in members:
            member.groups = [
                groups.get(group.id, group) for group in member.groups
            ]
        return members

    @staticmethod
    def _result_sourced_id(messages: Any) -> Optional[str]:
        for message in messages or []:
            claim = message.get(BASIC_OUTCOME_CLAIM)
            if isinstance(claim, dict) and claim.get('lis_result_sourcedid'):
                return claim['lis_result_sourcedid']
            if message.get('lis_result_sourcedid'):
                return message['lis_result_sourcedid']
        return None

    @classmethod
    def parse_nrps(cls, data: Dict[str, Any]) -> List[MemberRecord]:
        members = []
        for member in data.get('members', []):
            if member.get('status', 'Active') != 'Active':
                continue
            if member.get('user_id') in (None, ''):
                logger.warning("Skipping NRPS member without user_id")
                continue
            members.append(MemberRecord(
                user_id=member.get('user_id'),
                given_name=member.get('given_name', ''),
                family_name=member.get('family_name', ''),
                name=member.get('name', ''),
                email=member.get('email', ''),
                sourced_id=member.get('lis_person_sourcedid'),
                roles=member.get('roles', []),
                groups=[
                    GroupRecord(id=str(g['group_id']))
                    for g in member.get('group_enrollments', []) if g.get('group_id') is not None
                ],
                lti_result_sourced_id=cls._result_sourced_id(member.get('message')),
            ))
        return members

    @classmethod
    def parse_lis_v2(cls, data: Dict[str, Any]) -> List[MemberRecord]:
        subject = data.get('pageOf', {}).get('membershipSubject', {})
        members = []
        for membership in subject.get('membership', []):
            status = membership.get('status', 'Active').rsplit('#', 1)[-1].rsplit(':', 1)[-1]
            if status != 'Active':
                continue
            member = membership.get('member', {})
            if member.get('userId') in (None, ''):
                logger.warning("Skipping LIS v2 member without userId")
                continue
            members.append(MemberRecord(
                user_id=member.get('userId'),
                given_name=member.get('givenName', ''),
                family_name=member.get('familyName', ''),
                name=member.get('name', ''),
                email=member.get('email', ''),
                sourced_id=member.get('sourcedId'),
                roles=membership.get('role', []),
                lti_result_sourced_id=cls._result_sourced_id(membership.get('message')),
            ))
        return members


class ToolSettingsService(AdvantageService):
    """Tool settings service of a resource link."""

    scope = SCOPE_TOOL_SETTINGS

    def __init__(self, transport: LTITransport, platform: Any, endpoint: str, simple: bool = True):
        super().__init__(transport, platform, endpoint)
        self.simple = simple

    async def get(self, mode: Optional[ToolSettingsMode] = None) -> Union[Dict[str, Any], bool]:
        """
        Read the settings.

        Args:
            mode: Also include settings inherited from the context and
                tool proxy levels (``all``), or only those not overridden
                at a lower level (``distinct``)
        """
        url = self.endpoint
        if mode and mode != ToolSettingsMode.CURRENT:
            url = endpoint_with_query(url, {'bubble': mode.value})
        media_type = MEDIA_TYPE_TOOL_SETTINGS_SIMPLE
        if not self.simple or mode == ToolSettingsMode.ALL:
            media_type = MEDIA_TYPE_TOOL_SETTINGS

        if not await self._send(url, accept=media_type):
            return False
        data = self._json()
        if not isinstance(data, dict):
            return False
        if '@graph' not in data:
            return data

        settings: Dict[str, Any] = {}
        for node in data['@graph']:
            for name, value in (node.get('custom') or {}).items():
                settings.setdefault(name, value)
        return settings

    async def set(self, settings: Dict[str, Any]) -> bool:
        return await self._send(
            self.endpoint,
            method='PUT',
            body=settings,
            content_type=MEDIA_TYPE_TOOL_SETTINGS_SIMPLE
        )


class AssessmentControlService(AdvantageService):
    """Proctoring assessment control service."""

    scope = SCOPE_ASSESSMENT_CONTROL

    async def submit_action(
        self,
        action: AssessmentControlAction,
        user_result: UserResult,
        attempt_number: int,
        lti_resource_link_id: Optional[str] = None
    ) -> Union[str, bool]:
        """
        Report an action to the platform.

        Returns:
            The status returned by the platform, or False on failure
        """
        body = action.to_json()
        body.update({
            'user': {'iss': self.platform.platform_id, 'sub': user_result.lti_user_id},
            'resource_link': {'id': lti_resource_link_id},
            'attempt_number': attempt_number,
        })
        ok = await self._send(
            self.endpoint,
            method='POST',
            body=body,
            content_type=MEDIA_TYPE_ASSESSMENT_CONTROL,
            accept=MEDIA_TYPE_ASSESSMENT_CONTROL
        )
        if not ok:
            return False
        data = self._json()
        if not isinstance(data, dict) or not data.get('status'):
            return False
        return data['status']

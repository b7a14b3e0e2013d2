"""
Tests for roster retrieval across membership services.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, AsyncMock
from aioresponses import aioresponses
from yarl import URL

from ltilink.core.config import settings
from ltilink.core.lti_config import SCOPE_GROUPS, SCOPE_MEMBERSHIPS, SignatureMethod
from ltilink.integrations.lti.advantage import BASIC_OUTCOME_CLAIM, MembershipService
from ltilink.integrations.lti.api_hooks import MEMBERSHIPS_SERVICE_HOOK, ApiHookRegistry, ResourceLinkApiHook
from ltilink.integrations.lti.dispatcher import ServiceDispatcher
from ltilink.integrations.lti.error_handler import lti_error_handler
from ltilink.integrations.lti.transport import LTITransport
from ltilink.integrations.lti.xml_normalizer import parse_xml
from ltilink.models.access_token import AccessToken
from ltilink.models.membership import MemberRecord
from ltilink.models.platform import Context, Platform
from ltilink.models.resource_link import ResourceLink


NRPS_URL = "https://lms.example.com/api/lti/courses/1/names_and_roles"
V1_URL = "https://lms.example.com/api/lti/courses/1/memberships"
LINK_URL = "https://lms.example.com/api/lti/links/3/memberships"
GROUPS_URL = "https://lms.example.com/api/lti/courses/1/groups"
GROUP_SETS_URL = "https://lms.example.com/api/lti/courses/1/group_sets"
EXT_URL = "https://lms.example.com/ext/memberships"

NRPS_RESPONSE = {
    "id": NRPS_URL,
    "context": {"id": "ctx-1"},
    "members": [
        {
            "user_id": "U1",
            "status": "Active",
            "given_name": "Ann",
            "family_name": "Lee",
            "name": "Ann Lee",
            "email": "ann@example.com",
            "roles": ["http://purl.imsglobal.org/vocab/lis/v2/membership#Learner"],
            "group_enrollments": [{"group_id": "g1"}],
            "message": [{BASIC_OUTCOME_CLAIM: {"lis_result_sourcedid": "SRC-U1"}}],
        },
        {
            "user_id": "U2",
            "status": "Inactive",
            "roles": ["Learner"],
        },
        {
            "user_id": "T1",
            "name": "Tom Baker",
            "roles": ["Instructor"],
        },
    ],
}

EXT_MEMBERSHIPS = """<message_response>
  <statusinfo><codemajor>Success</codemajor><severity>Status</severity></statusinfo>
  <memberships>
    <member>
      <user_id>U1</user_id>
      <roles>Learner</roles>
      <person_name_given>Ann</person_name_given>
      <person_name_family>Lee</person_name_family>
      <person_contact_email_primary>ann@example.com</person_contact_email_primary>
      <lis_result_sourcedid>SRC-U1</lis_result_sourcedid>
      <groups>
        <group>
          <id>g1</id>
          <title>Team A</title>
          <set><id>s1</id><title>Teams</title></set>
        </group>
      </groups>
    </member>
    <member>
      <user_id>T1</user_id>
      <roles>Instructor,TeachingAssistant</roles>
      <person_name_full>Tom Baker</person_name_full>
    </member>
    <member>
      <roles>Learner</roles>
    </member>
  </memberships>
</message_response>"""


@pytest.fixture
def advantage_platform():
    """Create an LTI 1.3 platform with a valid token."""
    platform = Platform(
        key="lms.example.com",
        family_code="canvas",
        signature_method=SignatureMethod.RS256,
        client_id="client-1"
    )
    platform.set_access_token(AccessToken(
        platform, [SCOPE_MEMBERSHIPS, SCOPE_GROUPS], "tok", datetime.now(timezone.utc) + timedelta(hours=1)
    ))
    return platform


@pytest.fixture
def oauth1_platform():
    """Create an LTI 1.1 platform."""
    return Platform(key="consumer", secret="secret", family_code="moodle")


@pytest.fixture
def roster_service():
    """Create a roster service echoing the fetched members."""
    service = Mock()
    service.reconcile = AsyncMock(side_effect=lambda link, members, with_groups: members)
    return service


def make_link(platform, context_settings=None, **settings):
    link = ResourceLink()
    link.lti_resource_link_id = "rl-1"
    link.set_platform(platform)
    if context_settings is not None:
        link.set_context(Context("ctx-1", settings=context_settings, platform=platform))
    link.set_settings(settings)
    return link


class TestParsing:
    """Test parsing of membership containers."""

    def test_parse_nrps_skips_inactive_members(self):
        members = MembershipService.parse_nrps(NRPS_RESPONSE)

        assert [m.user_id for m in members] == ["U1", "T1"]
        assert members[0].lti_result_sourced_id == "SRC-U1"
        assert members[0].groups[0].id == "g1"
        assert members[1].lti_result_sourced_id is None

    def test_parse_lis_v2(self):
        data = {"pageOf": {"membershipSubject": {"membership": [
            {
                "status": "liss:Active",
                "role": ["Learner"],
                "member": {"userId": "U1", "givenName": "Ann", "familyName": "Lee"},
                "message": [{"message_type": "basic-lti-launch-request", "lis_result_sourcedid": "SRC-U1"}],
            },
            {"status": "liss:Inactive", "role": ["Learner"], "member": {"userId": "U2"}},
        ]}}}

        members = MembershipService.parse_lis_v2(data)

        assert len(members) == 1
        assert members[0].given_name == "Ann"
        assert members[0].lti_result_sourced_id == "SRC-U1"

    def test_members_without_user_id_are_skipped(self):
        nrps = {"members": [{"name": "No Id", "roles": ["Learner"]}, {"user_id": "", "roles": []}, {"user_id": 42}]}
        lis_v2 = {"pageOf": {"membershipSubject": {"membership": [
            {"status": "Active", "role": ["Learner"], "member": {"givenName": "No Id"}},
            {"status": "Active", "role": ["Learner"], "member": {"userId": "U1"}},
        ]}}}

        assert [m.user_id for m in MembershipService.parse_nrps(nrps)] == ["42"]
        assert [m.user_id for m in MembershipService.parse_lis_v2(lis_v2)] == ["U1"]

    def test_parse_ext_memberships(self):
        members = ServiceDispatcher.parse_ext_memberships(parse_xml(EXT_MEMBERSHIPS))

        assert [m.user_id for m in members] == ["U1", "T1"]
        assert members[0].email == "ann@example.com"
        assert members[0].groups[0].title == "Team A"
        assert members[0].groups[0].group_set.title == "Teams"
        assert members[1].roles == "Instructor,TeachingAssistant"
        assert members[1].groups == []

    def test_parse_ext_memberships_without_container(self):
        nodes = parse_xml("<message_response><statusinfo><codemajor>Success</codemajor></statusinfo></message_response>")

        assert ServiceDispatcher.parse_ext_memberships(nodes) is False


class TestGetMemberships:
    """Test roster source selection and fallback."""

    @pytest.mark.asyncio
    async def test_context_nrps_service(self, advantage_platform, roster_service):
        link = make_link(advantage_platform, {"custom_context_memberships_v2_url": NRPS_URL})

        with aioresponses() as m:
            m.get(f"{NRPS_URL}?rlid=rl-1", status=200, payload=NRPS_RESPONSE)
            async with LTITransport(authorized_scopes=[]) as transport:
                dispatcher = ServiceDispatcher(link, transport, ApiHookRegistry(), roster_service)
                members = await dispatcher.get_memberships()

            request = m.requests[('GET', URL(f"{NRPS_URL}?rlid=rl-1"))][0]

        assert [m.user_id for m in members] == ["U1", "T1"]
        assert request.kwargs["headers"]["Accept"] == "application/vnd.ims.lti-nrps.v2.membershipcontainer+json"
        roster_service.reconcile.assert_awaited_once()
        assert roster_service.reconcile.await_args.args[2] is False
        assert link.last_service_request.url == f"{NRPS_URL}?rlid=rl-1"

    @pytest.mark.asyncio
    async def test_context_service_with_groups(self, advantage_platform, roster_service):
        link = make_link(advantage_platform, {
            "custom_context_memberships_v2_url": NRPS_URL,
            "custom_context_groups_url": GROUPS_URL,
            "custom_context_group_sets_url": GROUP_SETS_URL,
        })

        with aioresponses() as m:
            m.get(f"{NRPS_URL}?rlid=rl-1", status=200, payload=NRPS_RESPONSE)
            m.get(GROUP_SETS_URL, status=200, payload={"sets": [{"id": "s1", "name": "Teams"}]})
            m.get(GROUPS_URL, status=200, payload={"groups": [{"id": "g1", "name": "Team A", "set_ids": ["s1"]}]})
            async with LTITransport(authorized_scopes=[]) as transport:
                dispatcher = ServiceDispatcher(link, transport, ApiHookRegistry(), roster_service)
                members = await dispatcher.get_memberships(with_groups=True)

        group = members[0].groups[0]
        assert group.title == "Team A"
        assert group.group_set.id == "s1"
        assert group.group_set.title == "Teams"
        assert link.last_service_request.url == f"{NRPS_URL}?rlid=rl-1"

    @pytest.mark.asyncio
    async def test_context_failure_falls_back_to_link_service(self, advantage_platform, roster_service):
        link = make_link(
            advantage_platform,
            {"custom_context_memberships_url": V1_URL},
            custom_link_memberships_url=LINK_URL
        )
        v1_response = {"pageOf": {"membershipSubject": {"membership": [
            {"status": "Active", "role": ["Learner"], "member": {"userId": "U9"}}
        ]}}}

        with aioresponses() as m:
            m.get(f"{V1_URL}?rlid=rl-1", status=404, body="", repeat=True)
            m.get(LINK_URL, status=200, payload=v1_response)
            async with LTITransport(authorized_scopes=[SCOPE_MEMBERSHIPS]) as transport:
                dispatcher = ServiceDispatcher(link, transport, ApiHookRegistry(), roster_service)
                members = await dispatcher.get_memberships()

        assert [m.user_id for m in members] == ["U9"]

    @pytest.mark.asyncio
    async def test_ext_service_with_groups(self, oauth1_platform, roster_service):
        link = make_link(
            oauth1_platform,
            ext_ims_lis_memberships_url=EXT_URL,
            ext_ims_lis_memberships_id="MEM-1"
        )

        with aioresponses() as m:
            m.post(EXT_URL, status=200, body=EXT_MEMBERSHIPS)
            async with LTITransport(authorized_scopes=[]) as transport:
                dispatcher = ServiceDispatcher(link, transport, ApiHookRegistry(), roster_service)
                members = await dispatcher.get_memberships(with_groups=True)

            form = m.requests[('POST', URL(EXT_URL))][0].kwargs["data"]

        assert form["lti_message_type"] == "basic-lis-readmembershipsforcontextwithgroups"
        assert form["id"] == "MEM-1"
        assert [m.user_id for m in members] == ["U1", "T1"]
        assert link.ext_response == EXT_MEMBERSHIPS

    @pytest.mark.asyncio
    async def test_ext_service_without_groups_support(self, oauth1_platform, roster_service):
        link = make_link(oauth1_platform, ext_ims_lis_memberships_url=EXT_URL)
        failure = "<message_response><statusinfo><codemajor>Unsupported</codemajor></statusinfo></message_response>"

        with aioresponses() as m:
            m.post(EXT_URL, status=200, body=failure)
            m.post(EXT_URL, status=200, body=EXT_MEMBERSHIPS)
            async with LTITransport(authorized_scopes=[]) as transport:
                dispatcher = ServiceDispatcher(link, transport, ApiHookRegistry(), roster_service)
                members = await dispatcher.get_memberships(with_groups=True)

            requests = m.requests[('POST', URL(EXT_URL))]

        assert len(requests) == 2
        assert requests[1].kwargs["data"]["lti_message_type"] == "basic-lis-readmembershipsforcontext"
        assert len(members) == 2

    @pytest.mark.asyncio
    async def test_groups_requested_prefers_ext_over_context_without_groups(self, oauth1_platform, roster_service):
        link = make_link(
            oauth1_platform,
            {"custom_context_memberships_url": V1_URL},
            ext_ims_lis_memberships_url=EXT_URL
        )

        with aioresponses() as m:
            m.post(EXT_URL, status=200, body=EXT_MEMBERSHIPS)
            async with LTITransport(authorized_scopes=[]) as transport:
                dispatcher = ServiceDispatcher(link, transport, ApiHookRegistry(), roster_service)
                members = await dispatcher.get_memberships(with_groups=True)

            assert ('GET', URL(f"{V1_URL}?rlid=rl-1")) not in m.requests

        assert len(members) == 2

    @pytest.mark.asyncio
    async def test_hook_service(self, oauth1_platform, roster_service):
        class RosterHook(ResourceLinkApiHook):
            async def get_memberships(self, with_groups=False):
                return [MemberRecord(user_id="H1", roles="Learner")]

        registry = ApiHookRegistry()
        registry.register(MEMBERSHIPS_SERVICE_HOOK, "moodle", RosterHook)
        link = make_link(oauth1_platform)

        dispatcher = ServiceDispatcher(link, LTITransport(), registry, roster_service)
        members = await dispatcher.get_memberships()

        assert [m.user_id for m in members] == ["H1"]

    @pytest.mark.asyncio
    async def test_failure_persists_nothing(self, oauth1_platform, roster_service):
        link = make_link(oauth1_platform, ext_ims_lis_memberships_url=EXT_URL)

        with aioresponses() as m:
            m.post(EXT_URL, status=500, body="")
            async with LTITransport(authorized_scopes=[]) as transport:
                dispatcher = ServiceDispatcher(link, transport, ApiHookRegistry(), roster_service)
                members = await dispatcher.get_memberships()

        assert members is False
        roster_service.reconcile.assert_not_called()
        assert link.last_service_request.status == 500

    @pytest.mark.asyncio
    async def test_no_service(self, oauth1_platform, roster_service):
        dispatcher = ServiceDispatcher(make_link(oauth1_platform), LTITransport(), ApiHookRegistry(), roster_service)

        assert await dispatcher.get_memberships() is False
        assert await dispatcher.has_memberships_service() is False


class TestPaging:
    """Test following of next page links."""

    PAGE_1 = f"{NRPS_URL}?rlid=rl-1"
    PAGE_2 = f"{NRPS_URL}?rlid=rl-1&page=2"
    PAGE_3 = f"{NRPS_URL}?rlid=rl-1&page=3"

    @staticmethod
    def next_link(url):
        return {"Link": f'<{url}>; rel="next"'}

    @pytest.fixture(autouse=True)
    def clear_errors(self):
        lti_error_handler.clear()
        yield
        lti_error_handler.clear()

    @pytest.mark.asyncio
    async def test_pages_are_followed(self, advantage_platform):
        with aioresponses() as m:
            m.get(self.PAGE_1, status=200, payload={"members": [{"user_id": "U1"}]}, headers=self.next_link(self.PAGE_2))
            m.get(self.PAGE_2, status=200, payload={"members": [{"user_id": "U2"}]})
            async with LTITransport(authorized_scopes=[]) as transport:
                members = await MembershipService(transport, advantage_platform, NRPS_URL, lti_resource_link_id="rl-1").get()

        assert [m.user_id for m in members] == ["U1", "U2"]

    @pytest.mark.asyncio
    async def test_next_link_to_same_page_stops(self, advantage_platform):
        with aioresponses() as m:
            m.get(self.PAGE_1, status=200, payload={"members": [{"user_id": "U1"}]},
                  headers=self.next_link(self.PAGE_1), repeat=True)
            async with LTITransport(authorized_scopes=[]) as transport:
                members = await MembershipService(transport, advantage_platform, NRPS_URL, lti_resource_link_id="rl-1").get()

            assert len(m.requests[('GET', URL(self.PAGE_1))]) == 1

        assert members is False
        assert len(lti_error_handler.get_recent_errors(category_filter="malformed_response")) == 1

    @pytest.mark.asyncio
    async def test_page_cycle_stops(self, advantage_platform):
        with aioresponses() as m:
            m.get(self.PAGE_1, status=200, payload={"members": []}, headers=self.next_link(self.PAGE_2), repeat=True)
            m.get(self.PAGE_2, status=200, payload={"members": []}, headers=self.next_link(self.PAGE_1), repeat=True)
            async with LTITransport(authorized_scopes=[]) as transport:
                members = await MembershipService(transport, advantage_platform, NRPS_URL, lti_resource_link_id="rl-1").get()

            assert len(m.requests[('GET', URL(self.PAGE_1))]) == 1
            assert len(m.requests[('GET', URL(self.PAGE_2))]) == 1

        assert members is False

    @pytest.mark.asyncio
    async def test_page_limit(self, advantage_platform, monkeypatch):
        monkeypatch.setattr(settings, "LTI_MAX_PAGES", 2)

        with aioresponses() as m:
            m.get(self.PAGE_1, status=200, payload={"members": []}, headers=self.next_link(self.PAGE_2))
            m.get(self.PAGE_2, status=200, payload={"members": []}, headers=self.next_link(self.PAGE_3))
            m.get(self.PAGE_3, status=200, payload={"members": []})
            async with LTITransport(authorized_scopes=[]) as transport:
                members = await MembershipService(transport, advantage_platform, NRPS_URL, lti_resource_link_id="rl-1").get()

            assert ('GET', URL(self.PAGE_3)) not in m.requests

        assert members is False

"""
Tests for roster reconciliation.
"""

import pytest
from unittest.mock import Mock, AsyncMock

from ltilink.core.database import create_engine, create_session_factory, init_db
from ltilink.core.lti_config import IdScope, LTIVersion
from ltilink.integrations.lti.data_connector import SQLAlchemyDataConnector
from ltilink.integrations.lti.error_handler import lti_error_handler
from ltilink.models.membership import GroupRecord, GroupSetRecord, MemberRecord
from ltilink.models.platform import Context, Platform
from ltilink.models.resource_link import ResourceLink
from ltilink.models.user_result import UserResult
from ltilink.services.roster_sync import RosterSyncService


@pytest.fixture
async def resource_link():
    """Create a saved resource link backed by an in-memory database."""
    engine = create_engine("sqlite+aiosqlite:///:memory:", echo=False)
    await init_db(engine)
    data_connector = SQLAlchemyDataConnector(create_session_factory(engine))

    platform = Platform(key="consumer", secret="secret", default_email="@school.example.com")
    await data_connector.save_platform(platform)
    context = Context("ctx-1", platform=platform)
    await data_connector.save_context(context)
    link = await ResourceLink.from_context(context, "rl-1")
    await link.save()

    yield link

    await engine.dispose()


@pytest.fixture
def roster_service():
    return RosterSyncService()


@pytest.fixture(autouse=True)
def clear_errors():
    lti_error_handler.clear()
    yield
    lti_error_handler.clear()


def member(user_id, sourced_id=None, roles="Learner", groups=None, **names):
    return MemberRecord(
        user_id=user_id,
        lti_result_sourced_id=sourced_id,
        roles=roles,
        groups=groups or [],
        **names
    )


async def persisted(link):
    users = await link.get_user_result_sourced_ids(True)
    return {user_id: user.lti_result_sourced_id for user_id, user in users.items()}


class TestBuildUserResults:
    """Test conversion of members into user results."""

    @pytest.mark.asyncio
    async def test_names_email_and_roles(self, resource_link, roster_service):
        members = [
            member("U1", "SRC-1", given_name="Ann", family_name="Lee", email="ann@example.com"),
            member("U2", name="Bob Stone", roles="Instructor"),
        ]

        users = await roster_service.build_user_results(resource_link, members)

        assert users[0].fullname == "Ann Lee"
        assert users[0].email == "ann@example.com"
        assert users[0].roles == ["urn:lti:role:ims/lis/Learner"]
        assert users[0].is_learner() is True
        assert users[1].firstname == "Bob"
        assert users[1].lastname == "Stone"
        assert users[1].email == "U2@school.example.com"
        assert users[1].is_staff() is True
        assert users[1].lti_result_sourced_id is None

    @pytest.mark.asyncio
    async def test_group_sets_are_counted(self, resource_link, roster_service):
        teams = GroupSetRecord(id="s1", title="Teams")
        team_a = GroupRecord(id="g1", title="Team A", group_set=teams)
        team_b = GroupRecord(id="g2", title="Team B", group_set=teams)
        members = [
            member("U1", groups=[team_a]),
            member("U2", groups=[team_b]),
            member("T1", roles="Instructor", groups=[team_a, GroupRecord(id="g9", title="Staff")]),
        ]

        users = await roster_service.build_user_results(resource_link, members, with_groups=True)

        assert resource_link.group_sets == {"s1": {
            "title": "Teams",
            "groups": ["g1", "g2"],
            "num_members": 3,
            "num_staff": 1,
            "num_learners": 2,
        }}
        assert resource_link.groups == {
            "g1": {"title": "Team A", "set": "s1"},
            "g2": {"title": "Team B", "set": "s1"},
            "g9": {"title": "Staff"},
        }
        assert users[2].groups == ["g1", "g9"]

    @pytest.mark.asyncio
    async def test_group_maps_kept_without_groups(self, resource_link, roster_service):
        resource_link.groups = {"old": {"title": "Old"}}

        await roster_service.build_user_results(resource_link, [member("U1")])

        assert resource_link.groups == {"old": {"title": "Old"}}


class TestReconcile:
    """Test replacement of the persisted roster."""

    @pytest.mark.asyncio
    async def test_roster_replaces_persisted_users(self, resource_link, roster_service):
        for user_id in ("U1", "U2"):
            user_result = UserResult.from_resource_link(resource_link, user_id)
            user_result.lti_result_sourced_id = f"OLD-{user_id}"
            await user_result.save()

        users = await roster_service.reconcile(resource_link, [member("U2", "NEW-U2"), member("U3", "NEW-U3")])

        assert [u.lti_user_id for u in users] == ["U2", "U3"]
        assert await persisted(resource_link) == {"U2": "NEW-U2", "U3": "NEW-U3"}

    @pytest.mark.asyncio
    async def test_members_without_sourced_id_are_not_saved(self, resource_link, roster_service):
        old = UserResult.from_resource_link(resource_link, "U1")
        old.lti_result_sourced_id = "OLD-U1"
        await old.save()

        summary = await roster_service.apply(
            resource_link, await roster_service.build_user_results(resource_link, [member("U1"), member("U2")])
        )

        assert summary == {"saved": 0, "deleted": 0, "failed": 0}
        assert await persisted(resource_link) == {"U1": "OLD-U1"}

    @pytest.mark.asyncio
    async def test_empty_roster_deletes_everyone(self, resource_link, roster_service):
        old = UserResult.from_resource_link(resource_link, "U1")
        old.lti_result_sourced_id = "OLD-U1"
        await old.save()

        users = await roster_service.reconcile(resource_link, [])

        assert users == []
        assert await persisted(resource_link) == {}

    @pytest.mark.asyncio
    async def test_failed_writes_are_reported(self, roster_service):
        link = Mock()
        link.lti_resource_link_id = "rl-1"
        old_user = Mock()
        old_user.delete = AsyncMock(return_value=False)
        link.get_user_result_sourced_ids = AsyncMock(return_value={"U1": old_user})
        new_user = Mock()
        new_user.lti_result_sourced_id = "SRC-2"
        new_user.save = AsyncMock(return_value=False)
        new_user.get_id = AsyncMock(return_value="U2")

        summary = await roster_service.apply(link, [new_user])

        assert summary == {"saved": 0, "deleted": 0, "failed": 2}
        link.get_user_result_sourced_ids.assert_awaited_once_with(True, IdScope.RESOURCE)
        errors = lti_error_handler.get_recent_errors(category_filter="reconciliation")
        assert len(errors) == 1
        assert errors[0]["details"]["failed"] == 2

"""
Roster reconciliation of fetched memberships against persisted user results.
"""

import logging
from typing import Any, Dict, List

from ltilink.core.lti_config import IdScope
from ltilink.integrations.lti.error_handler import LTIError, LTIErrorCategory, lti_error_handler
from ltilink.models.membership import MemberRecord
from ltilink.models.roles import parse_roles
from ltilink.models.user_result import UserResult


logger = logging.getLogger(__name__)


class RosterSyncService:
    """
    Service for applying a membership list to a resource link.

    The membership list replaces the persisted roster: users with a result
    sourcedId are saved and previously persisted users missing from the list
    are deleted.
    """

    def __init__(self, id_scope: IdScope = IdScope.RESOURCE):
        self.id_scope = id_scope

    async def build_user_results(
        self,
        resource_link: Any,
        members: List[MemberRecord],
        with_groups: bool = False
    ) -> List[UserResult]:
        """
        Convert members into user results and collect their groups.

        The resource link's ``group_sets`` and ``groups`` maps are rebuilt
        when groups were requested or any member belongs to a group.

        Args:
            resource_link: Resource link the roster belongs to
            members: Members returned by a roster service
            with_groups: Whether group information was requested

        Returns:
            List of user results in roster order
        """
        platform = await resource_link.get_platform()
        if with_groups or any(member.groups for member in members):
            resource_link.group_sets = {}
            resource_link.groups = {}

        user_results = []
        for member in members:
            user_result = UserResult.from_resource_link(resource_link, member.user_id)
            user_result.set_names(member.given_name, member.family_name, member.name)
            user_result.sourced_id = member.sourced_id
            user_result.set_email(member.email, platform.default_email)
            user_result.roles = parse_roles(member.roles, platform.lti_version)
            user_result.lti_result_sourced_id = member.lti_result_sourced_id or None

            for group in member.groups:
                self._add_group(resource_link, user_result, group)
            user_results.append(user_result)

        return user_results

    @staticmethod
    def _add_group(resource_link: Any, user_result: UserResult, group: Any) -> None:
        if group.group_set is not None:
            set_id = group.group_set.id
            group_set = resource_link.group_sets.setdefault(set_id, {
                'title': group.group_set.title,
                'groups': [],
                'num_members': 0,
                'num_staff': 0,
                'num_learners': 0,
            })
            group_set['num_members'] += 1
            if user_result.is_staff():
                group_set['num_staff'] += 1
            if user_result.is_learner():
                group_set['num_learners'] += 1
            if group.id not in group_set['groups']:
                group_set['groups'].append(group.id)
            resource_link.groups[group.id] = {'title': group.title, 'set': set_id}
        else:
            resource_link.groups[group.id] = {'title': group.title}
        if group.id not in user_result.groups:
            user_result.groups.append(group.id)

    async def apply(self, resource_link: Any, user_results: List[UserResult]) -> Dict[str, int]:
        """
        Replace the persisted roster with the given user results.

        Returns:
            Counts of saved and deleted user results
        """
        old_users = await resource_link.get_user_result_sourced_ids(True, self.id_scope)
        summary = {'saved': 0, 'deleted': 0, 'failed': 0}

        for user_result in user_results:
            if user_result.lti_result_sourced_id:
                if await user_result.save():
                    summary['saved'] += 1
                else:
                    summary['failed'] += 1
            old_users.pop(await user_result.get_id(self.id_scope), None)

        for user_id, old_user in old_users.items():
            if await old_user.delete():
                summary['deleted'] += 1
            else:
                summary['failed'] += 1
                logger.warning(f"Could not delete user result {user_id}")

        if summary['failed']:
            lti_error_handler.log_error(LTIError(
                f"Roster update for resource link {resource_link.lti_resource_link_id} "
                f"had {summary['failed']} failed writes",
                category=LTIErrorCategory.RECONCILIATION,
                operation_type='memberships',
                details=summary
            ))
        return summary

    async def reconcile(
        self,
        resource_link: Any,
        members: List[MemberRecord],
        with_groups: bool = False
    ) -> List[UserResult]:
        """Build user results for a fetched roster and apply them."""
        user_results = await self.build_user_results(resource_link, members, with_groups)
        summary = await self.apply(resource_link, user_results)
        logger.info(
            f"Reconciled roster of resource link {resource_link.lti_resource_link_id}: "
            f"{len(user_results)} members, {summary['saved']} saved, {summary['deleted']} deleted"
        )
        return user_results

"""
Persistence of platforms, contexts, resource links and user results.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ltilink.core.lti_config import IdScope, LTIVersion
from ltilink.models.lti_records import (
    LTIContextRecord, LTIPlatformRecord, LTIResourceLinkRecord, LTIUserResultRecord, utcnow
)
from ltilink.models.platform import Context, Platform
from ltilink.models.resource_link import ResourceLink, ResourceLinkShare
from ltilink.models.user_result import UserResult


logger = logging.getLogger(__name__)


class DataConnector(ABC):
    """Abstract base class for LTI persistence backends."""

    @abstractmethod
    async def load_platform(self, record_id: int) -> Optional[Platform]:
        """Load a platform by record ID."""
        pass

    @abstractmethod
    async def save_platform(self, platform: Platform) -> bool:
        pass

    @abstractmethod
    async def load_context(self, record_id: int) -> Optional[Context]:
        """Load a context by record ID."""
        pass

    @abstractmethod
    async def save_context(self, context: Context) -> bool:
        pass

    @abstractmethod
    async def load_resource_link(self, resource_link: ResourceLink) -> bool:
        """
        Populate a resource link from storage.

        The record is found by record ID if set, otherwise by LTI resource
        link ID within the link's context or platform. When not found the
        record ID is left unset.
        """
        pass

    @abstractmethod
    async def save_resource_link(self, resource_link: ResourceLink) -> bool:
        pass

    @abstractmethod
    async def delete_resource_link(self, resource_link: ResourceLink) -> bool:
        pass

    @abstractmethod
    async def get_user_result_sourced_ids(
        self,
        resource_link: ResourceLink,
        local_only: bool,
        id_scope: Optional[IdScope]
    ) -> Dict[str, UserResult]:
        """Users with a result sourcedId, keyed by their scoped ID."""
        pass

    @abstractmethod
    async def get_shares(self, resource_link: ResourceLink) -> List[ResourceLinkShare]:
        pass

    @abstractmethod
    async def save_user_result(self, user_result: UserResult) -> bool:
        pass

    @abstractmethod
    async def delete_user_result(self, user_result: UserResult) -> bool:
        pass


class SQLAlchemyDataConnector(DataConnector):
    """Data connector storing records through an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # Platforms and contexts

    def _platform_from_record(self, record: LTIPlatformRecord) -> Platform:
        return Platform(
            key=record.consumer_key or '',
            secret=record.secret,
            family_code=record.family_code or '',
            lti_version=LTIVersion(record.lti_version) if record.lti_version else LTIVersion.V1,
            signature_method=record.signature_method,
            platform_id=record.platform_id,
            client_id=record.client_id,
            deployment_id=record.deployment_id,
            access_token_url=record.access_token_url,
            default_email=record.default_email or '',
            record_id=record.id,
            data_connector=self
        )

    async def load_platform(self, record_id: int) -> Optional[Platform]:
        async with self.session_factory() as session:
            record = await session.get(LTIPlatformRecord, record_id)
            if record is None:
                logger.warning(f"Platform record {record_id} not found")
                return None
            return self._platform_from_record(record)

    async def save_platform(self, platform: Platform) -> bool:
        method = platform.signature_method
        values = {
            'consumer_key': platform.key or None,
            'secret': platform.secret,
            'family_code': platform.family_code,
            'lti_version': platform.lti_version.value if platform.lti_version else None,
            'signature_method': getattr(method, 'value', method),
            'platform_id': platform.platform_id,
            'client_id': platform.client_id,
            'deployment_id': platform.deployment_id,
            'access_token_url': platform.access_token_url,
            'default_email': platform.default_email,
        }
        try:
            async with self.session_factory() as session:
                record = await session.get(LTIPlatformRecord, platform.record_id) if platform.record_id else None
                if record is None:
                    record = LTIPlatformRecord(**values)
                    session.add(record)
                else:
                    for name, value in values.items():
                        setattr(record, name, value)
                await session.commit()
                platform.record_id = record.id
                platform.data_connector = self
                return True
        except SQLAlchemyError as e:
            logger.error(f"Error saving platform {platform.key}: {e}")
            return False

    async def load_context(self, record_id: int) -> Optional[Context]:
        async with self.session_factory() as session:
            record = await session.get(LTIContextRecord, record_id)
            if record is None:
                logger.warning(f"Context record {record_id} not found")
                return None
            return Context(
                lti_context_id=record.lti_context_id,
                title=record.title or '',
                settings=record.settings or {},
                platform_id=record.platform_id,
                record_id=record.id,
                data_connector=self
            )

    async def save_context(self, context: Context) -> bool:
        try:
            async with self.session_factory() as session:
                record = await session.get(LTIContextRecord, context.record_id) if context.record_id else None
                if record is None:
                    record = LTIContextRecord(platform_id=context.platform_id, lti_context_id=context.lti_context_id)
                    session.add(record)
                record.title = context.title
                record.settings = dict(context.settings)
                await session.commit()
                context.record_id = record.id
                context.data_connector = self
                return True
        except SQLAlchemyError as e:
            logger.error(f"Error saving context {context.lti_context_id}: {e}")
            return False

    # Resource links

    async def load_resource_link(self, resource_link: ResourceLink) -> bool:
        query = select(LTIResourceLinkRecord)
        if resource_link.record_id is not None:
            query = query.where(LTIResourceLinkRecord.id == resource_link.record_id)
        elif resource_link.context_id is not None:
            query = query.where(
                LTIResourceLinkRecord.context_id == resource_link.context_id,
                LTIResourceLinkRecord.lti_resource_link_id == resource_link.lti_resource_link_id
            )
        elif resource_link.platform_id is not None:
            query = query.where(
                LTIResourceLinkRecord.platform_id == resource_link.platform_id,
                LTIResourceLinkRecord.lti_resource_link_id == resource_link.lti_resource_link_id
            )
        else:
            return False

        async with self.session_factory() as session:
            result = await session.execute(query)
            record = result.scalars().first()

        if record is None:
            resource_link.record_id = None
            return False

        resource_link.record_id = record.id
        resource_link.lti_resource_link_id = record.lti_resource_link_id
        resource_link.title = record.title or ''
        resource_link.set_settings(record.settings or {})
        if record.platform_id is not None and resource_link.platform_id != record.platform_id:
            resource_link.platform_id = record.platform_id
        if record.context_id is not None:
            resource_link.context_id = record.context_id
        resource_link.primary_resource_link_id = record.primary_resource_link_id
        resource_link.share_approved = record.share_approved
        resource_link.created = record.created_at
        resource_link.updated = record.updated_at
        return True

    async def save_resource_link(self, resource_link: ResourceLink) -> bool:
        platform_id = resource_link.platform_id
        context_id = resource_link.context_id
        if platform_id is None and resource_link.has_context():
            context = await resource_link.get_context()
            platform_id = context.platform_id if context else None

        try:
            async with self.session_factory() as session:
                record = None
                if resource_link.record_id is not None:
                    record = await session.get(LTIResourceLinkRecord, resource_link.record_id)
                if record is None:
                    record = LTIResourceLinkRecord(lti_resource_link_id=resource_link.lti_resource_link_id)
                    session.add(record)
                record.platform_id = platform_id
                record.context_id = context_id
                record.lti_resource_link_id = resource_link.lti_resource_link_id
                record.title = resource_link.title
                record.settings = dict(resource_link.get_settings())
                record.primary_resource_link_id = resource_link.primary_resource_link_id
                record.share_approved = resource_link.share_approved
                record.updated_at = utcnow()
                await session.commit()

                resource_link.record_id = record.id
                resource_link.created = record.created_at
                resource_link.updated = record.updated_at
                return True
        except SQLAlchemyError as e:
            logger.error(f"Error saving resource link {resource_link.lti_resource_link_id}: {e}")
            return False

    async def delete_resource_link(self, resource_link: ResourceLink) -> bool:
        record_id = resource_link.record_id
        if record_id is None:
            return False
        try:
            async with self.session_factory() as session:
                await session.execute(
                    delete(LTIUserResultRecord).where(LTIUserResultRecord.resource_link_id == record_id)
                )
                await session.execute(
                    update(LTIResourceLinkRecord)
                    .where(LTIResourceLinkRecord.primary_resource_link_id == record_id)
                    .values(primary_resource_link_id=None, share_approved=None)
                )
                await session.execute(delete(LTIResourceLinkRecord).where(LTIResourceLinkRecord.id == record_id))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting resource link {resource_link.lti_resource_link_id}: {e}")
            return False

        resource_link.initialize()
        resource_link.record_id = None
        logger.info(f"Deleted resource link record {record_id}")
        return True

    async def get_user_result_sourced_ids(
        self,
        resource_link: ResourceLink,
        local_only: bool = False,
        id_scope: Optional[IdScope] = None
    ) -> Dict[str, UserResult]:
        if resource_link.record_id is None:
            return {}

        query = select(LTIUserResultRecord).where(
            LTIUserResultRecord.lti_result_sourced_id.is_not(None)
        )
        if local_only:
            query = query.where(LTIUserResultRecord.resource_link_id == resource_link.record_id)
        else:
            shared = select(LTIResourceLinkRecord.id).where(
                LTIResourceLinkRecord.primary_resource_link_id == resource_link.record_id,
                LTIResourceLinkRecord.share_approved.is_(True)
            )
            query = query.where(or_(
                LTIUserResultRecord.resource_link_id == resource_link.record_id,
                LTIUserResultRecord.resource_link_id.in_(shared)
            ))

        async with self.session_factory() as session:
            result = await session.execute(query.order_by(LTIUserResultRecord.id))
            records = result.scalars().all()

        links: Dict[int, Any] = {resource_link.record_id: resource_link}
        user_results: Dict[str, UserResult] = {}
        for record in records:
            link = links.get(record.resource_link_id)
            if link is None:
                link = await ResourceLink.from_record_id(record.resource_link_id, self)
                links[record.resource_link_id] = link
            user_result = UserResult.from_resource_link(link, record.lti_user_id)
            user_result.record_id = record.id
            user_result.lti_result_sourced_id = record.lti_result_sourced_id
            user_result.created = record.created_at
            user_result.updated = record.updated_at
            user_results[await user_result.get_id(id_scope)] = user_result
        return user_results

    async def get_shares(self, resource_link: ResourceLink) -> List[ResourceLinkShare]:
        if resource_link.record_id is None:
            return []
        async with self.session_factory() as session:
            result = await session.execute(
                select(LTIResourceLinkRecord)
                .where(LTIResourceLinkRecord.primary_resource_link_id == resource_link.record_id)
                .order_by(LTIResourceLinkRecord.id)
            )
            return [
                ResourceLinkShare(
                    resource_link_id=record.id,
                    title=record.title or '',
                    approved=record.share_approved
                )
                for record in result.scalars().all()
            ]

    # User results

    async def save_user_result(self, user_result: UserResult) -> bool:
        resource_link_id = user_result.resource_link_id
        if resource_link_id is None and user_result.resource_link is not None:
            resource_link_id = user_result.resource_link.record_id
        if resource_link_id is None:
            logger.warning(f"Cannot save user result {user_result.lti_user_id} of an unsaved resource link")
            return False

        try:
            async with self.session_factory() as session:
                record = None
                if user_result.record_id is not None:
                    record = await session.get(LTIUserResultRecord, user_result.record_id)
                if record is None:
                    result = await session.execute(
                        select(LTIUserResultRecord).where(
                            LTIUserResultRecord.resource_link_id == resource_link_id,
                            LTIUserResultRecord.lti_user_id == user_result.lti_user_id
                        )
                    )
                    record = result.scalars().first()
                if record is None:
                    record = LTIUserResultRecord(resource_link_id=resource_link_id, lti_user_id=user_result.lti_user_id)
                    session.add(record)
                record.lti_result_sourced_id = user_result.lti_result_sourced_id
                record.updated_at = utcnow()
                await session.commit()

                user_result.record_id = record.id
                user_result.resource_link_id = resource_link_id
                user_result.created = record.created_at
                user_result.updated = record.updated_at
                return True
        except SQLAlchemyError as e:
            logger.error(f"Error saving user result {user_result.lti_user_id}: {e}")
            return False

    async def delete_user_result(self, user_result: UserResult) -> bool:
        if user_result.record_id is not None:
            condition = [LTIUserResultRecord.id == user_result.record_id]
        else:
            resource_link_id = user_result.resource_link_id or getattr(user_result.resource_link, 'record_id', None)
            if resource_link_id is None:
                return False
            condition = [
                LTIUserResultRecord.resource_link_id == resource_link_id,
                LTIUserResultRecord.lti_user_id == user_result.lti_user_id
            ]
        try:
            async with self.session_factory() as session:
                await session.execute(delete(LTIUserResultRecord).where(*condition))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting user result {user_result.lti_user_id}: {e}")
            return False

        user_result.record_id = None
        return True

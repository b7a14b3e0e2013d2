from .outcome import Outcome
from .access_token import AccessToken
from .http_message import HttpMessage
from .line_item import LineItem, AssessmentControlAction
from .membership import MemberRecord, GroupRecord, GroupSetRecord
from .platform import Platform, Context, SignedRequest
from .resource_link import ResourceLink, ResourceLinkShare
from .user_result import UserResult
from .lti_records import (
    LTIPlatformRecord, LTIContextRecord, LTIResourceLinkRecord, LTIUserResultRecord
)

__all__ = [
    "Outcome",
    "AccessToken",
    "HttpMessage",
    "LineItem",
    "AssessmentControlAction",
    "MemberRecord",
    "GroupRecord",
    "GroupSetRecord",
    "Platform",
    "Context",
    "SignedRequest",
    "ResourceLink",
    "ResourceLinkShare",
    "UserResult",
    "LTIPlatformRecord",
    "LTIContextRecord",
    "LTIResourceLinkRecord",
    "LTIUserResultRecord",
]

"""
Normalized membership records returned by every roster service.
"""

from typing import List, Optional, Union
from pydantic import BaseModel, Field, validator


class GroupSetRecord(BaseModel):
    """Group set a group belongs to."""
    id: str
    title: str = ''


class GroupRecord(BaseModel):
    """Group a member belongs to."""
    id: str
    title: str = ''
    group_set: Optional[GroupSetRecord] = None


class MemberRecord(BaseModel):
    """One member of a roster, independent of the service that returned it."""
    user_id: str
    given_name: str = ''
    family_name: str = ''
    name: str = ''
    email: str = ''
    sourced_id: Optional[str] = None
    roles: Union[str, List[str]] = Field(default_factory=list)
    groups: List[GroupRecord] = Field(default_factory=list)
    lti_result_sourced_id: Optional[str] = None

    @validator('user_id', pre=True)
    def coerce_user_id(cls, v):
        if v is None or v == '':
            raise ValueError('user_id is required')
        return str(v)

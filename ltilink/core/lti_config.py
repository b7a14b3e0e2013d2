"""
Core LTI configuration: protocol enums, scopes, media types and tool credentials.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, validator


class ServiceAction(str, Enum):
    """Actions supported by the grading and setting services."""
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    CREATE = "create"
    UPDATE = "update"


class OutcomeType(str, Enum):
    """Result value types understood by the legacy outcome services."""
    DECIMAL = "decimal"
    PERCENTAGE = "percentage"
    RATIO = "ratio"
    LETTER_AF = "letteraf"
    LETTER_AF_PLUS = "letterafplus"
    PASS_FAIL = "passfail"
    TEXT = "freetext"


class IdScope(int, Enum):
    """Scope used when building a user identifier."""
    ID_ONLY = 0
    GLOBAL = 1      # platform-wide
    CONTEXT = 2     # unique within a context
    RESOURCE = 3    # unique within a resource link


ID_SCOPE_SEPARATOR = ":"


class ToolSettingsMode(str, Enum):
    """Level selection for Tool Settings service reads."""
    CURRENT = ""
    ALL = "all"
    DISTINCT = "distinct"


class LTIVersion(str, Enum):
    """LTI message versions."""
    V1 = "LTI-1p0"
    V1P3 = "1.3.0"


class SignatureMethod(str, Enum):
    """Message signing methods supported by a platform."""
    HMAC_SHA1 = "HMAC-SHA1"
    RS256 = "RS256"


# OAuth 2 scopes
SCOPE_SCORE = "https://purl.imsglobal.org/spec/lti-ags/scope/score"
SCOPE_RESULT = "https://purl.imsglobal.org/spec/lti-ags/scope/result.readonly"
SCOPE_LINEITEM = "https://purl.imsglobal.org/spec/lti-ags/scope/lineitem"
SCOPE_LINEITEM_READONLY = "https://purl.imsglobal.org/spec/lti-ags/scope/lineitem.readonly"
SCOPE_MEMBERSHIPS = "https://purl.imsglobal.org/spec/lti-nrps/scope/contextmembership.readonly"
SCOPE_GROUPS = "https://purl.imsglobal.org/spec/lti-gs/scope/contextgroup.readonly"
SCOPE_TOOL_SETTINGS = "https://purl.imsglobal.org/spec/lti-ts/scope/toolsetting"
SCOPE_ASSESSMENT_CONTROL = "https://purl.imsglobal.org/spec/lti-ap/scope/control.all"
SCOPE_BASIC_OUTCOME = "https://purl.imsglobal.org/spec/lti-bo/scope/basicoutcome"
SCOPE_EXT_OUTCOMES = "https://purl.imsglobal.org/spec/lti-ext/scope/outcomes"
SCOPE_EXT_MEMBERSHIPS = "https://purl.imsglobal.org/spec/lti-ext/scope/memberships"
SCOPE_EXT_SETTING = "https://purl.imsglobal.org/spec/lti-ext/scope/setting"

# Media types
MEDIA_TYPE_SCORE = "application/vnd.ims.lis.v1.score+json"
MEDIA_TYPE_RESULTS = "application/vnd.ims.lis.v2.resultcontainer+json"
MEDIA_TYPE_LINE_ITEM = "application/vnd.ims.lis.v2.lineitem+json"
MEDIA_TYPE_LINE_ITEMS = "application/vnd.ims.lis.v2.lineitemcontainer+json"
MEDIA_TYPE_MEMBERSHIPS_V1 = "application/vnd.ims.lis.v2.membershipcontainer+json"
MEDIA_TYPE_MEMBERSHIPS_NRPS = "application/vnd.ims.lti-nrps.v2.membershipcontainer+json"
MEDIA_TYPE_GROUPS = "application/vnd.ims.lti-gs.v1.contextgroupcontainer+json"
MEDIA_TYPE_GROUP_SETS = "application/vnd.ims.lti-gs.v1.contextgroupsetcontainer+json"
MEDIA_TYPE_TOOL_SETTINGS = "application/vnd.ims.lti.v2.toolsettings+json"
MEDIA_TYPE_TOOL_SETTINGS_SIMPLE = "application/vnd.ims.lti.v2.toolsettings.simple+json"
MEDIA_TYPE_ASSESSMENT_CONTROL = "application/vnd.ims.lti-ap.v1.control+json"

# Launch setting keys consulted by the dispatcher
SETTING_LINEITEM_URL = "custom_lineitem_url"
SETTING_LINEITEMS_URL = "custom_lineitems_url"
SETTING_AGS_SCOPES = "custom_ags_scopes"
SETTING_OUTCOME_SERVICE_URL = "lis_outcome_service_url"
SETTING_EXT_OUTCOME_URL = "ext_ims_lis_basic_outcome_url"
SETTING_EXT_TOOL_SETTING_URL = "ext_ims_lti_tool_setting_url"
SETTING_EXT_TOOL_SETTING_ID = "ext_ims_lti_tool_setting_id"
SETTING_EXT_TOOL_SETTING = "ext_ims_lti_tool_setting"
SETTING_LINK_SETTING_URL = "custom_link_setting_url"
SETTING_LINK_MEMBERSHIPS_URL = "custom_link_memberships_url"
SETTING_CONTEXT_MEMBERSHIPS_URL = "custom_context_memberships_url"
SETTING_CONTEXT_MEMBERSHIPS_V2_URL = "custom_context_memberships_v2_url"
SETTING_CONTEXT_GROUPS_URL = "custom_context_groups_url"
SETTING_CONTEXT_GROUP_SETS_URL = "custom_context_group_sets_url"
SETTING_EXT_MEMBERSHIPS_URL = "ext_ims_lis_memberships_url"
SETTING_EXT_MEMBERSHIPS_ID = "ext_ims_lis_memberships_id"
SETTING_ACS_URL = "custom_ap_acs_url"
SETTING_RESULT_VALUE_TYPES = "ext_ims_lis_resultvalue_sourcedids"
SETTING_OUTCOME_DATA_VALUES = "ext_outcome_data_values_accepted"


class ToolCredentials(BaseModel):
    """Tool-side credentials used to request OAuth 2 access tokens."""
    client_assertion_key: str = Field(..., description="PEM encoded RSA private key")
    kid: Optional[str] = None
    required_scopes: List[str] = []

    @validator('client_assertion_key')
    def validate_key(cls, v):
        if 'PRIVATE KEY' not in v:
            raise ValueError('client_assertion_key must be a PEM encoded private key')
        return v.strip()

    @validator('required_scopes', pre=True)
    def split_scopes(cls, v):
        if isinstance(v, str):
            return [scope.strip() for scope in v.split(',') if scope.strip()]
        return v


class PlatformConfig(BaseModel):
    """Declared configuration of a platform."""
    key: str = ''
    family_code: str = ''
    lti_version: LTIVersion = LTIVersion.V1
    signature_method: SignatureMethod = SignatureMethod.HMAC_SHA1
    secret: Optional[str] = None
    platform_id: Optional[str] = None
    client_id: Optional[str] = None
    deployment_id: Optional[str] = None
    access_token_url: Optional[str] = None
    default_email: str = ''

    class Config:
        extra = "forbid"

    @validator('access_token_url')
    def validate_access_token_url(cls, v):
        if v and not v.startswith(('http://', 'https://')):
            raise ValueError('access_token_url must start with http:// or https://')
        return v

    @validator('secret', always=True)
    def validate_secret(cls, v, values):
        if values.get('signature_method') == SignatureMethod.HMAC_SHA1 and values.get('key') and not v:
            raise ValueError('secret is required for HMAC-SHA1 signed platforms')
        return v

"""
Platform and context records used by resource links.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from ltilink.core.lti_config import LTIVersion, PlatformConfig, SignatureMethod
from ltilink.integrations.lti import signing
from ltilink.models.access_token import AccessToken


@dataclass
class SignedRequest:
    """Result of signing a request: signed form parameters and/or headers."""
    params: Optional[Dict[str, str]] = None
    headers: Dict[str, str] = field(default_factory=dict)


class Platform:
    """Remote learning platform with the credentials used to call its services."""

    def __init__(
        self,
        key: str = '',
        secret: Optional[str] = None,
        family_code: str = '',
        lti_version: LTIVersion = LTIVersion.V1,
        signature_method: Union[SignatureMethod, str, None] = SignatureMethod.HMAC_SHA1,
        platform_id: Optional[str] = None,
        client_id: Optional[str] = None,
        deployment_id: Optional[str] = None,
        access_token_url: Optional[str] = None,
        default_email: str = '',
        record_id: Optional[int] = None,
        data_connector: Any = None
    ):
        self.key = key
        self.secret = secret
        self.family_code = family_code
        self.lti_version = lti_version
        self.signature_method = signature_method
        self.platform_id = platform_id
        self.client_id = client_id
        self.deployment_id = deployment_id
        self.access_token_url = access_token_url
        self.default_email = default_email
        self.record_id = record_id
        self.data_connector = data_connector
        self._access_token: Optional[AccessToken] = None

    @classmethod
    def from_config(cls, config: PlatformConfig, data_connector: Any = None) -> "Platform":
        return cls(data_connector=data_connector, **config.dict())

    def get_key(self) -> str:
        return self.key

    def get_family_code(self) -> str:
        return self.family_code

    def get_data_connector(self) -> Any:
        return self.data_connector

    def use_oauth1(self) -> bool:
        """Check whether service requests are signed with OAuth 1."""
        method = self.signature_method.value if isinstance(self.signature_method, SignatureMethod) \
            else self.signature_method
        return not method or method.startswith('HMAC')

    def get_access_token(self) -> Optional[AccessToken]:
        return self._access_token

    def set_access_token(self, access_token: Optional[AccessToken]) -> None:
        self._access_token = access_token

    def add_signature(
        self,
        url: str,
        data: Union[Dict[str, Any], str, None],
        method: str = 'POST',
        content_type: Optional[str] = None
    ) -> SignedRequest:
        """
        Sign a service request.

        With OAuth 1 a parameter mapping is signed into the returned params and
        a raw body is signed with a body hash Authorization header. Otherwise the
        current access token is presented as a bearer credential.
        """
        headers: Dict[str, str] = {}
        if content_type:
            headers['Content-Type'] = content_type

        if self.use_oauth1():
            if isinstance(data, dict):
                headers.pop('Content-Type', None)
                return SignedRequest(
                    params=signing.sign_parameters(url, method, data, self.key, self.secret or ''),
                    headers=headers
                )
            headers['Authorization'] = signing.body_signature_header(
                url, method, data or '', self.key, self.secret or ''
            )
            return SignedRequest(headers=headers)

        if isinstance(data, dict):
            headers.pop('Content-Type', None)
        if self._access_token is not None and self._access_token.token:
            headers['Authorization'] = f"Bearer {self._access_token.token}"
        return SignedRequest(headers=headers)

    def __repr__(self) -> str:
        return f"Platform(key={self.key!r}, family_code={self.family_code!r})"


class Context:
    """Course-like grouping within a platform."""

    def __init__(
        self,
        lti_context_id: Optional[str] = None,
        title: str = '',
        settings: Optional[Dict[str, Any]] = None,
        platform: Optional[Platform] = None,
        platform_id: Optional[int] = None,
        record_id: Optional[int] = None,
        data_connector: Any = None
    ):
        self.lti_context_id = lti_context_id
        self.title = title
        self.settings: Dict[str, Any] = dict(settings or {})
        self.record_id = record_id
        self.data_connector = data_connector or getattr(platform, 'data_connector', None)
        self._platform = platform
        self._platform_id = platform_id if platform_id is not None else getattr(platform, 'record_id', None)

    @property
    def platform_id(self) -> Optional[int]:
        return self._platform_id

    def get_setting(self, name: str, default: Any = '') -> Any:
        return self.settings.get(name, default)

    def get_data_connector(self) -> Any:
        return self.data_connector

    async def get_platform(self) -> Optional[Platform]:
        if self._platform is None and self._platform_id is not None and self.data_connector:
            self._platform = await self.data_connector.load_platform(self._platform_id)
        return self._platform

    def __repr__(self) -> str:
        return f"Context(lti_context_id={self.lti_context_id!r})"

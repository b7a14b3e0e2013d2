"""
Signed request transport for LTI service calls.

Every call follows the same send-and-retry loop: a token-based call whose
first attempt is unsuccessful gets one fresh token for the call's scope and
is sent once more. Signature-based (OAuth 1) calls are never retried.
"""

import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union
from xml.sax.saxutils import escape

import aiohttp

from ltilink.core.config import settings
from ltilink.core.lti_config import SCOPE_BASIC_OUTCOME
from ltilink.integrations.lti.error_handler import (
    LTIResponseParseError, LTITransportError, lti_error_handler
)
from ltilink.integrations.lti.oauth_service import AccessTokenService
from ltilink.integrations.lti.xml_normalizer import XmlNode, node_get, parse_xml
from ltilink.models.access_token import AccessToken
from ltilink.models.http_message import HttpMessage


logger = logging.getLogger(__name__)

POX_NAMESPACE = "http://www.imsglobal.org/services/ltiv1p1/xsd/imsoms_v1p0"

ResponseCheck = Callable[[HttpMessage], Awaitable[bool]]


class LTITransport:
    """Builds, signs, sends and retries single service calls."""

    def __init__(
        self,
        token_service: Optional[AccessTokenService] = None,
        authorized_scopes: Optional[Iterable[str]] = None,
        timeout: Optional[int] = None
    ):
        self.token_service = token_service or AccessTokenService()
        self.authorized_scopes = set(
            settings.LTI_AUTHORIZED_SCOPES if authorized_scopes is None else authorized_scopes
        )
        self.timeout = timeout or settings.LTI_HTTP_TIMEOUT
        self.last_message: Optional[HttpMessage] = None
        self.last_nodes: Optional[XmlNode] = None
        self._http_session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        self._http_session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            headers={'User-Agent': settings.LTI_USER_AGENT}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if not self._http_session:
            raise RuntimeError("LTI transport must be used as async context manager")
        return self._http_session

    def clear_trace(self) -> None:
        self.last_message = None
        self.last_nodes = None

    # Access tokens

    def _current_token(self, platform: Any) -> AccessToken:
        token = platform.get_access_token()
        if token is None:
            token = AccessToken(platform)
            platform.set_access_token(token)
        return token

    async def _refresh_token(self, platform: Any, scope: str) -> bool:
        """Force a new token for just the given scope; True if one was issued."""
        token = self._current_token(platform)
        token.expire()
        ok = await self.token_service.request_token(self.session, platform, token, scope, scope_only=True)
        platform.set_access_token(token)
        return bool(ok) and bool(token.token)

    async def _prepare_token(self, platform: Any, scope: str) -> bool:
        """
        Make sure the platform holds a usable token covering the scope before sending.

        A pre-authorized scope only needs some valid token, so a missing or
        expired one is replaced by a token for all the tool's scopes.

        Returns:
            True if a new token was forced for this call
        """
        token = self._current_token(platform)
        if token.has_scope(scope):
            return False
        if scope in self.authorized_scopes:
            if not token.token or token.is_expired:
                await self.token_service.request_token(self.session, platform, token, scope, scope_only=False)
                platform.set_access_token(token)
            return False
        await self._refresh_token(platform, scope)
        return True

    # Send loop

    async def _send(
        self,
        platform: Any,
        scope: str,
        build: Callable[[], HttpMessage],
        check: ResponseCheck,
        operation: str
    ) -> bool:
        """
        Send a request built by ``build`` with at most one token-refresh retry.

        Args:
            platform: Platform receiving the request
            scope: Scope the request requires
            build: Creates the signed request (called once per attempt)
            check: Decides whether the response is a success
            operation: Name of the operation, for diagnostics

        Returns:
            True if the platform reported success
        """
        self.clear_trace()
        token_auth = not platform.use_oauth1()
        new_token = await self._prepare_token(platform, scope) if token_auth else False

        while True:
            http = build()
            self.last_message = http
            self.last_nodes = None
            await http.send(self.session)
            ok = await check(http)
            if not http.ok:
                lti_error_handler.log_error(LTITransportError(
                    f"{operation} request to {http.url} failed: {http.error}",
                    platform_key=platform.get_key(),
                    operation_type=operation,
                    details={'status': http.status}
                ))

            if ok or not token_auth or new_token:
                break
            logger.info(f"Retrying {operation} for {platform.get_key()} with a new access token")
            new_token = True
            if not await self._refresh_token(platform, scope):
                break

        return ok

    def _parse(self, http: HttpMessage, platform: Any, operation: str) -> Optional[XmlNode]:
        if not http.ok:
            return None
        try:
            self.last_nodes = parse_xml(http.response)
        except LTIResponseParseError as e:
            e.platform_key = platform.get_key()
            e.operation_type = operation
            lti_error_handler.log_error(e, {'url': http.url})
            self.last_nodes = None
        return self.last_nodes

    # Legacy extension services

    async def send_ext_request(
        self,
        platform: Any,
        message_type: str,
        url: str,
        params: Dict[str, Any],
        scope: str
    ) -> bool:
        """
        Send a legacy extension service request as a form POST.

        Success is signalled by ``statusinfo/codemajor`` equal to ``Success``.
        """
        if not url:
            self.clear_trace()
            return False

        form = {k: '' if v is None else str(v) for k, v in params.items()}
        form['lti_version'] = platform.lti_version.value if platform.lti_version else ''
        form['lti_message_type'] = message_type

        def build() -> HttpMessage:
            signed = platform.add_signature(url, form, 'POST', 'application/x-www-form-urlencoded')
            headers = dict(signed.headers)
            headers['Accept'] = 'application/xml'
            body = signed.params if signed.params is not None else form
            return HttpMessage(url, 'POST', body, headers)

        async def check(http: HttpMessage) -> bool:
            nodes = self._parse(http, platform, message_type)
            return node_get(nodes, 'statusinfo', 'codemajor') == 'Success'

        return await self._send(platform, scope, build, check, message_type)

    # LTI 1.1 Basic Outcomes

    @staticmethod
    def pox_envelope(operation: str, record_xml: str, message_id: Optional[str] = None) -> str:
        """Wrap a request body in an ``imsx_POXEnvelopeRequest``."""
        message_id = message_id or uuid.uuid4().hex
        return (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            f'<imsx_POXEnvelopeRequest xmlns="{POX_NAMESPACE}">\n'
            '  <imsx_POXHeader>\n'
            '    <imsx_POXRequestHeaderInfo>\n'
            '      <imsx_version>V1.0</imsx_version>\n'
            f'      <imsx_messageIdentifier>{escape(message_id)}</imsx_messageIdentifier>\n'
            '    </imsx_POXRequestHeaderInfo>\n'
            '  </imsx_POXHeader>\n'
            '  <imsx_POXBody>\n'
            f'    <{operation}Request>\n'
            f'{record_xml}\n'
            f'    </{operation}Request>\n'
            '  </imsx_POXBody>\n'
            '</imsx_POXEnvelopeRequest>'
        )

    async def send_pox_request(
        self,
        platform: Any,
        operation: str,
        url: str,
        record_xml: str
    ) -> bool:
        """
        Send an LTI 1.1 Basic Outcomes request.

        Success is signalled by ``imsx_codeMajor`` equal to ``success`` in
        the response header.
        """
        if not url:
            self.clear_trace()
            return False

        body = self.pox_envelope(operation, record_xml)

        def build() -> HttpMessage:
            signed = platform.add_signature(url, body, 'POST', 'application/xml')
            headers = dict(signed.headers)
            headers['Accept'] = 'application/xml'
            return HttpMessage(url, 'POST', body, headers)

        async def check(http: HttpMessage) -> bool:
            nodes = self._parse(http, platform, operation)
            code = node_get(
                nodes, 'imsx_POXHeader', 'imsx_POXResponseHeaderInfo', 'imsx_statusInfo', 'imsx_codeMajor'
            )
            return code == 'success'

        return await self._send(platform, SCOPE_BASIC_OUTCOME, build, check, operation)

    # Advantage services

    async def send_service_request(
        self,
        platform: Any,
        url: str,
        scope: str,
        method: str = 'GET',
        body: Union[str, None] = None,
        content_type: Optional[str] = None,
        accept: Optional[str] = None
    ) -> bool:
        """Send a REST service request; success is any 2xx response."""
        if not url:
            self.clear_trace()
            return False

        def build() -> HttpMessage:
            signed = platform.add_signature(url, body, method, content_type)
            headers = dict(signed.headers)
            if accept:
                headers['Accept'] = accept
            return HttpMessage(url, method, body, headers)

        async def check(http: HttpMessage) -> bool:
            return http.ok

        return await self._send(platform, scope, build, check, f"{method} {scope.rsplit('/', 1)[-1]}")

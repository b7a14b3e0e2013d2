"""
OAuth 2.0 access token service for LTI Advantage service calls.
"""

import asyncio
import logging
import secrets
import time
from typing import Any, Dict, List, Optional

import aiohttp
from jose import jwt
from jose.exceptions import JOSEError

from ltilink.core.config import settings
from ltilink.core.lti_config import ToolCredentials
from ltilink.integrations.lti.error_handler import LTIAuthenticationError, lti_error_handler
from ltilink.models.access_token import AccessToken


logger = logging.getLogger(__name__)

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


class AccessTokenService:
    """
    Obtains access tokens with the client credentials grant.

    The tool authenticates with a JWT client assertion signed with its
    private key, as required by LTI Advantage platforms.
    """

    def __init__(self, credentials: Optional[ToolCredentials] = None):
        self.credentials = credentials

    def create_client_assertion(self, platform: Any) -> str:
        """Build the signed JWT identifying the tool to the token endpoint."""
        if not self.credentials:
            raise LTIAuthenticationError(
                "No tool credentials available for client assertion",
                platform_key=platform.get_key()
            )

        now = int(time.time())
        claims = {
            'iss': platform.client_id,
            'sub': platform.client_id,
            'aud': platform.access_token_url,
            'iat': now,
            'exp': now + settings.LTI_CLIENT_ASSERTION_LIFETIME,
            'jti': secrets.token_urlsafe(16),
        }
        headers = {'kid': self.credentials.kid} if self.credentials.kid else None
        return jwt.encode(claims, self.credentials.client_assertion_key, algorithm='RS256', headers=headers)

    def requested_scopes(self, scope: str, scope_only: bool) -> List[str]:
        """Scopes to ask for: just the one needed, or all the tool requires."""
        if scope_only or not self.credentials:
            return [scope] if scope else []
        scopes = list(self.credentials.required_scopes)
        if scope and scope not in scopes:
            scopes.append(scope)
        return scopes

    async def request_token(
        self,
        session: aiohttp.ClientSession,
        platform: Any,
        token: AccessToken,
        scope: str = '',
        scope_only: bool = False
    ) -> bool:
        """
        Replace the token in place with a newly issued one.

        Args:
            session: Open HTTP client session
            platform: Platform issuing the token
            token: Access token to update
            scope: Scope required by the pending service call
            scope_only: Request only the required scope

        Returns:
            True if a non-empty token was obtained
        """
        token.clear()
        scopes = self.requested_scopes(scope, scope_only)

        try:
            if not platform.access_token_url:
                raise LTIAuthenticationError(
                    "Platform has no access token URL",
                    platform_key=platform.get_key(),
                    operation_type='access_token'
                )

            token_data = {
                'grant_type': 'client_credentials',
                'client_assertion_type': CLIENT_ASSERTION_TYPE,
                'client_assertion': self.create_client_assertion(platform),
                'scope': ' '.join(scopes),
            }

            async with session.post(
                platform.access_token_url,
                data=token_data,
                headers={'Accept': 'application/json'}
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise LTIAuthenticationError(
                        f"Token request failed: Status {response.status}, Error: {error_text}",
                        platform_key=platform.get_key(),
                        operation_type='access_token'
                    )
                token_response: Dict[str, Any] = await response.json(content_type=None)

        except LTIAuthenticationError as e:
            lti_error_handler.log_error(e)
            return False
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, JOSEError) as e:
            lti_error_handler.log_error(LTIAuthenticationError(
                f"Error requesting access token: {e}",
                platform_key=platform.get_key(),
                operation_type='access_token',
                original_exception=e
            ))
            return False

        granted = token_response.get('scope')
        token.update(
            token_response.get('access_token'),
            granted.split() if granted else scopes,
            int(token_response.get('expires_in') or settings.LTI_ACCESS_TOKEN_LIFETIME)
        )
        platform.set_access_token(token)

        if not token.token:
            logger.warning(f"Token response for {platform.get_key()} did not include an access token")
            return False

        logger.info(f"Obtained access token for {platform.get_key()} with scopes {token.scopes}")
        return True

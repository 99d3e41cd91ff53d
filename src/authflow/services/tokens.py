"""OAuth 2.0 token endpoint exchange.

Implements RFC 6749 token endpoint requests for every grant type with one
primitive: a grant's form parameters plus client authentication, sent as
application/x-www-form-urlencoded. The exchangers return the raw response;
:func:`parse_token_response` turns it into a TokenResponse or a
ProviderError.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Mapping

from pydantic import ValidationError

from authflow.models.errors import ProviderError, TokenResponseError
from authflow.models.tokens import TokenResponse
from authflow.transport.base import (
    AsyncTransport,
    SyncTransport,
    TokenHttpRequest,
    TokenHttpResponse,
)

logger = logging.getLogger(__name__)


def build_token_request(
    token_url: str,
    grant_params: Mapping[str, str],
    client_id: str,
    client_secret: str | None = None,
    use_basic_auth: bool = False,
) -> TokenHttpRequest:
    """Build a form-encoded token endpoint request.

    With ``use_basic_auth`` the client credentials travel in an HTTP Basic
    ``Authorization`` header and are left out of the body. Otherwise
    ``client_id`` (and ``client_secret`` when set) are body fields.

    Args:
        token_url: Token endpoint URL
        grant_params: Grant-specific form parameters, including grant_type
        client_id: OAuth client identifier
        client_secret: Client secret, None for public clients
        use_basic_auth: Send credentials as HTTP Basic instead of body fields

    Returns:
        TokenHttpRequest ready for a transport
    """
    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }
    form = dict(grant_params)

    if use_basic_auth:
        credentials = f"{client_id}:{client_secret or ''}".encode("utf-8")
        headers["Authorization"] = "Basic " + base64.b64encode(credentials).decode(
            "ascii"
        )
    else:
        form["client_id"] = client_id
        if client_secret:
            form["client_secret"] = client_secret

    return TokenHttpRequest(url=token_url, form=form, headers=headers)


def parse_token_response(response: TokenHttpResponse) -> TokenResponse:
    """Parse a raw token endpoint response.

    Handles both successful responses (2xx) and error responses (RFC 6749
    Section 5.2). An ``error`` field is honored even on a 2xx status.

    Args:
        response: Raw response from the token endpoint

    Returns:
        TokenResponse: Successful response with an access token

    Raises:
        ProviderError: If the body carries an OAuth error
        TokenResponseError: If the body cannot be understood
    """
    try:
        response_data = response.json()
    except ValueError:
        response_data = None

    if isinstance(response_data, dict) and response_data.get("error"):
        logger.warning(
            f"Token endpoint returned {response.status_code}: "
            f"{response_data['error']} - "
            f"{response_data.get('error_description', 'No description provided')}"
        )
        raise ProviderError(
            error=str(response_data["error"]),
            error_description=response_data.get("error_description"),
            error_uri=response_data.get("error_uri"),
            state=response_data.get("state"),
            status_code=response.status_code,
        )

    if not response.is_success:
        raise TokenResponseError(
            f"Token endpoint returned HTTP {response.status_code}: {response.text}"
        )

    if not isinstance(response_data, dict):
        raise TokenResponseError("Token response is not a JSON object")

    try:
        token_response = TokenResponse(**response_data)
    except ValidationError as e:
        raise TokenResponseError(f"Invalid token response format: {e}") from e

    if not token_response.access_token:
        raise TokenResponseError("Token response missing required access_token")

    return token_response


class TokenExchanger:
    """Sends token requests over a blocking transport.

    Used uniformly for authorization code, refresh, client credentials
    and password grants.
    """

    def __init__(self, transport: SyncTransport):
        self.transport = transport

    def exchange(
        self,
        token_url: str,
        grant_params: Mapping[str, str],
        client_id: str,
        client_secret: str | None = None,
        use_basic_auth: bool = False,
    ) -> TokenHttpResponse:
        """Send a grant to the token endpoint and return the raw response.

        A non-2xx status is returned, not raised.

        Raises:
            TransportError: If the endpoint cannot be reached
        """
        request = build_token_request(
            token_url, grant_params, client_id, client_secret, use_basic_auth
        )
        logger.debug(
            f"Token request: grant_type={grant_params.get('grant_type')}, "
            f"client_id={client_id}, basic_auth={use_basic_auth}"
        )
        return self.transport.send(request)


class AsyncTokenExchanger:
    """Sends token requests over a cooperative transport."""

    def __init__(self, transport: AsyncTransport):
        self.transport = transport

    async def exchange(
        self,
        token_url: str,
        grant_params: Mapping[str, str],
        client_id: str,
        client_secret: str | None = None,
        use_basic_auth: bool = False,
    ) -> TokenHttpResponse:
        """Send a grant to the token endpoint and return the raw response.

        Raises:
            TransportError: If the endpoint cannot be reached
        """
        request = build_token_request(
            token_url, grant_params, client_id, client_secret, use_basic_auth
        )
        logger.debug(
            f"Token request: grant_type={grant_params.get('grant_type')}, "
            f"client_id={client_id}, basic_auth={use_basic_auth}"
        )
        return await self.transport.send(request)

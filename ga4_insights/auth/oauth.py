"""Google OAuth sign-in.

The web flow asks for offline access so Google hands back a refresh token;
that token is what the GA4 service later uses to read reports on the user's
behalf.
"""

import os
from typing import Any, Dict

from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from ga4_insights import config
from ga4_insights.ga4.service import SCOPES
from ga4_insights.storage import crud
from ga4_insights.storage.models import User
from ga4_insights.utils.error_handler import AuthenticationError
from ga4_insights.utils.logging import get_logger

logger = get_logger(__name__)

# Google adds/reorders scopes (e.g. "openid") in the token response.
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


def _client_config() -> Dict[str, Any]:
    return {
        "web": {
            "client_id": config.GOOGLE_CLIENT_ID,
            "client_secret": config.GOOGLE_CLIENT_SECRET,
            "auth_uri": config.GOOGLE_AUTH_URI,
            "token_uri": config.GOOGLE_TOKEN_URI,
            "redirect_uris": [config.GOOGLE_REDIRECT_URI],
        }
    }


def _flow() -> Flow:
    # The callback builds a fresh Flow, so PKCE verifiers cannot be carried over.
    return Flow.from_client_config(
        _client_config(),
        scopes=SCOPES,
        redirect_uri=config.GOOGLE_REDIRECT_URI,
        autogenerate_code_verifier=False,
    )


def get_auth_url() -> str:
    """Return the Google consent screen URL."""
    url, _state = _flow().authorization_url(
        access_type="offline",
        prompt="consent",  # Force a refresh token on every consent
        include_granted_scopes="true",
    )
    return url


def exchange_code(code: str) -> Any:
    """Trade an authorization code for user credentials."""
    flow = _flow()
    try:
        flow.fetch_token(code=code)
    except (OAuth2Error, ValueError) as e:
        logger.error(f"Token exchange failed: {e}")
        raise AuthenticationError(f"Authentication failed: {e}") from e
    return flow.credentials


def fetch_user_info(credentials: Any) -> Dict[str, Any]:
    """Return Google's ``userinfo`` payload (email, name, id, picture)."""
    service = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
    try:
        return service.userinfo().get().execute()
    except HttpError as e:
        logger.error(f"Userinfo request failed: {e}")
        raise AuthenticationError("Failed to get user information from Google") from e


def upsert_user(user_info: Dict[str, Any], credentials: Any) -> User:
    """Create the user on first login, refresh stored tokens afterwards."""
    email = user_info.get("email")
    if not email:
        raise AuthenticationError("Failed to get user email from Google")

    access_token = getattr(credentials, "token", None)
    refresh_token = getattr(credentials, "refresh_token", None)

    user = crud.get_user_by_email(email)
    if user is None:
        logger.info(f"Creating user for {email}")
        return crud.insert_user({
            "email": email,
            "name": user_info.get("name") or "User",
            "google_id": user_info.get("id") or "",
            "access_token": access_token or "",
            "refresh_token": refresh_token or "",
            "profile_image": user_info.get("picture") or "",
        })

    # Google only sends a refresh token on consent; keep the old one otherwise.
    return crud.update_user(user.id, {
        "access_token": access_token or user.access_token,
        "refresh_token": refresh_token or user.refresh_token,
        "profile_image": user_info.get("picture") or user.profile_image,
    })


def login_with_code(code: str) -> User:
    credentials = exchange_code(code)
    user_info = fetch_user_info(credentials)
    return upsert_user(user_info, credentials)

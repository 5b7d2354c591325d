from __future__ import annotations

import logging

LOGGER = logging.getLogger("shiftdesk")
APP_VERSION = "0.1.0"

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
DEFAULT_SCOPE = "openid email profile"
CALLBACK_PATH = "/calendar/auth/callback"
DEBUG_CLIENT_ID = "debug-client-id"

# Tokens are treated as expired this many seconds before the provider says so.
REFRESH_MARGIN_SECONDS = 300
# Floor for the timer after a refresh that returned an already-expiring token.
MIN_REFRESH_DELAY_SECONDS = 30
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3

SESSION_ID_STORAGE_KEY = "oauth_session_id"
PKCE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
CODE_VERIFIER_LENGTH = 128
STATE_LENGTH = 32

ACCESS_DENIED_MESSAGE = "Access denied – Admin privileges required"

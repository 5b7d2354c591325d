from __future__ import annotations


class AuthError(RuntimeError):
    status_code: int | None = None

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(AuthError):
    status_code = 500


class OAuthProviderError(AuthError):
    def __init__(self, error: str, description: str | None = None) -> None:
        message = f"OAuth error: {error}"
        if description:
            message = f"{message} - {description}"
        super().__init__(message, status_code=400)
        self.error = error
        self.description = description


class InvalidCallbackError(AuthError):
    status_code = 400


class SessionLostError(AuthError):
    """The pending login id did not survive the provider redirect."""


class StateNotFoundError(AuthError):
    status_code = 404


class StateExpiredError(AuthError):
    status_code = 410


class StateMismatchError(AuthError):
    status_code = 403


class TokenExchangeFailed(AuthError):
    pass


class NoRefreshTokenError(AuthError):
    pass


class AlreadyRefreshingError(AuthError):
    pass


class TokenRefreshFailed(AuthError):
    pass


class NotAuthenticatedError(AuthError):
    status_code = 401


class TokenValidationFailed(AuthError):
    pass


class AdminAccessDenied(AuthError):
    status_code = 403


class ProxyRequestError(AuthError):
    """Any other non-success answer from the auth proxy."""

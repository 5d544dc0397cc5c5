"""
Error taxonomy for the mmm client

Every failure coming out of the session is raised as one of these so the
sync loop and the shell can decide what to do without looking at HTTP
details: bootstrap treats everything as fatal, the sync loop retries, the
shell reports and carries on.
"""

from typing import Optional


class MmmError(Exception):
    """Base exception for client operations"""

    def __init__(self, message: str, errcode: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.errcode = errcode
        self.status = status


class AuthError(MmmError):
    """Login failed or the access token is no longer valid"""
    pass


class NetworkError(MmmError):
    """Transport failure, timeout, rate limit or server error (retryable)"""
    pass


class NotFoundError(MmmError):
    """Room or history target does not exist"""
    pass


class AccessDeniedError(MmmError):
    """Server refused the request for this user"""
    pass


__all__ = ['MmmError', 'AuthError', 'NetworkError', 'NotFoundError', 'AccessDeniedError']

from typing import Optional


class ModelError(Exception):
    """Base class for model backend failures"""
    retryable = False
    # Retries spent before the error was given up on
    retry_count = 0


class ModelNetworkError(ModelError):
    """Connection to the backend failed"""
    retryable = True


class ModelTimeoutError(ModelError):
    """Backend did not answer in time"""
    retryable = True


class ModelNotFoundError(ModelError):
    """Requested model is not available"""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"Model not found: {model_name}")


class InvalidModelConfigError(ModelError):
    """Provider configuration is invalid"""


class ServiceUnavailableError(ModelError):
    """Backend is down or overloaded"""
    retryable = True


class RateLimitError(ModelError):
    """Backend rejected the call because of rate limiting"""
    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class AuthenticationError(ModelError):
    """Backend rejected the credentials"""


class UnknownModelError(ModelError):
    """Any other backend failure"""

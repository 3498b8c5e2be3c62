"""Exception hierarchy and the provider error normalizer."""

import asyncio
import errno
import logging
import socket
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    INVALID_API_KEY = "INVALID_API_KEY"
    MISSING_API_KEY = "MISSING_API_KEY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    API_CALL_ERROR = "API_CALL_ERROR"
    INVALID_PROMPT = "INVALID_PROMPT"
    INVALID_RESPONSE_FORMAT = "INVALID_RESPONSE_FORMAT"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    UNSUPPORTED_CAPABILITY = "UNSUPPORTED_CAPABILITY"
    ENCRYPTION_ERROR = "ENCRYPTION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class PromptForgeError(Exception):
    """Root of every error raised by this package."""


class LLMAdapterError(PromptForgeError):
    """A provider failure in the normalized taxonomy.

    Parameters
    ----------
    message : str
        Human-readable description, safe to show to the user.
    code : ErrorCode
        Stable, machine-readable classification.
    status_code : int, optional
        HTTP status reported by the provider, when there was one.
    original : BaseException, optional
        The underlying exception, kept for debugging.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        status_code: Optional[int] = None,
        original: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.status_code = status_code
        self.original = original

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code.value!r}, "
            f"status_code={self.status_code!r}, message={self.message!r})"
        )


class EncryptionError(PromptForgeError):
    """Encrypting or decrypting a stored secret failed."""

    code = ErrorCode.ENCRYPTION_ERROR


class LegacySecretError(EncryptionError):
    """A stored secret predates per-secret salts and cannot be decrypted."""


class ConversationNotFoundError(PromptForgeError, KeyError):
    """A continuation referenced a conversation id that does not exist."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id!r} not found")
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return self.args[0]


# Matched against the exception's MRO so SDK modules never need importing here.
_TIMEOUT_ERRORS = {
    "APITimeoutError",
    "TimeoutException",
    "ReadTimeout",
    "ConnectTimeout",
}
_CONNECTION_ERRORS = {"APIConnectionError", "ConnectError", "NetworkError"}
_RESPONSE_FORMAT_ERRORS = {
    "APIResponseValidationError",
    "JSONDecodeError",
    "InvalidResponseFormat",
}
_PROMPT_ERRORS = {"InvalidPrompt"}
_API_CALL_ERRORS = {
    "APIError",
    "APICallError",
    "ResponseError",
    "ClientError",
    "ServerError",
}


def _class_names(error: BaseException) -> set:
    return {cls.__name__ for cls in type(error).__mro__}


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    # google-genai reports the HTTP status as an integer ``code``
    code = getattr(error, "code", None)
    if isinstance(code, int) and not isinstance(code, bool) and 100 <= code < 600:
        return code
    return None


def _from_status(status: int, message: str, provider_name: str) -> LLMAdapterError:
    if status == 400:
        return LLMAdapterError(
            f"Invalid request: {message}", ErrorCode.INVALID_REQUEST, status
        )
    if status == 401:
        return LLMAdapterError(
            f"Invalid API key for {provider_name}", ErrorCode.INVALID_API_KEY, status
        )
    if status == 403:
        return LLMAdapterError(
            f"Permission denied by {provider_name}: {message}",
            ErrorCode.PERMISSION_DENIED,
            status,
        )
    if status == 404:
        return LLMAdapterError(
            f"Model not found: {message}", ErrorCode.MODEL_NOT_FOUND, status
        )
    if status == 429:
        return LLMAdapterError(
            f"Rate limit exceeded for {provider_name}",
            ErrorCode.RATE_LIMIT_EXCEEDED,
            status,
        )
    if status in (500, 502, 503, 504):
        return LLMAdapterError(
            f"{provider_name} service temporarily unavailable",
            ErrorCode.SERVICE_UNAVAILABLE,
            status,
        )
    return LLMAdapterError(
        f"{provider_name} returned HTTP {status}: {message}",
        ErrorCode.UNKNOWN_ERROR,
        status,
    )


def _is_timeout(error: BaseException, names: set) -> bool:
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return True
    if names & _TIMEOUT_ERRORS:
        return True
    return getattr(error, "errno", None) == errno.ETIMEDOUT


def _is_ollama_request_error(error: BaseException) -> bool:
    cls = type(error)
    return cls.__name__ == "RequestError" and cls.__module__.startswith("ollama")


def _is_connection_failure(error: BaseException, names: set) -> bool:
    if isinstance(error, (ConnectionError, socket.gaierror)):
        return True
    if names & _CONNECTION_ERRORS:
        return True
    return getattr(error, "errno", None) in (errno.ECONNREFUSED, errno.EHOSTUNREACH)


def normalize_error(error: BaseException, provider_name: str) -> LLMAdapterError:
    """Maps any provider, SDK or transport failure to an ``LLMAdapterError``.

    Classification order is: already normalized, HTTP status, timeout,
    connection failure, known SDK error names, then ``UNKNOWN_ERROR``. The
    result always carries the original exception.
    """
    if isinstance(error, LLMAdapterError):
        return error

    message = str(error) or type(error).__name__
    status = _status_of(error)
    if status is not None:
        normalized = _from_status(status, message, provider_name)
    else:
        names = _class_names(error)
        if _is_timeout(error, names):
            normalized = LLMAdapterError(
                f"Request to {provider_name} timed out", ErrorCode.TIMEOUT_ERROR
            )
        elif _is_connection_failure(error, names):
            normalized = LLMAdapterError(
                f"Could not reach {provider_name}: {message}", ErrorCode.NETWORK_ERROR
            )
        elif names & _RESPONSE_FORMAT_ERRORS:
            normalized = LLMAdapterError(
                f"Unexpected response format from {provider_name}: {message}",
                ErrorCode.INVALID_RESPONSE_FORMAT,
            )
        elif names & _PROMPT_ERRORS or _is_ollama_request_error(error):
            normalized = LLMAdapterError(
                f"Invalid prompt: {message}", ErrorCode.INVALID_PROMPT
            )
        elif names & _API_CALL_ERRORS:
            normalized = LLMAdapterError(
                f"{provider_name} API call failed: {message}", ErrorCode.API_CALL_ERROR
            )
        else:
            normalized = LLMAdapterError(message, ErrorCode.UNKNOWN_ERROR)

    normalized.original = error
    logger.debug(
        "Normalized %s from %s to %s",
        type(error).__name__,
        provider_name,
        normalized.code.value,
    )
    return normalized

"""
Error handling for launch orchestration.

Every error leaving the orchestrator is a LaunchGateError carrying a
structured code, a retriable flag and a details bag that tool servers can
serialize as-is.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """
    Error codes for launch orchestration.

    - INVALID_INPUT: caller supplied something unusable (unknown preset,
      attach config without an endpoint). Never retriable.
    - LAUNCH_FAILED: any terminal failure while bringing the app up.
      Always retriable.
    - INTERNAL_ERROR: unexpected failure.
    """

    INVALID_INPUT = "INVALID_INPUT"
    LAUNCH_FAILED = "LAUNCH_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class LaunchGateError(Exception):
    """Base exception for launch orchestration errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        retriable: bool = False,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize launch error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            retriable: Whether the caller may retry (possibly with adjusted input)
            details: Additional structured context
        """
        self.code = code
        self.message = message
        self.retriable = retriable
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to a plain dictionary.

        Returns:
            Error dictionary with code, message, retriable and details
        """
        result: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "retriable": self.retriable,
        }

        if self.details:
            result["details"] = self.details

        return result


def invalid_input(message: str, details: Optional[Dict[str, Any]] = None) -> LaunchGateError:
    """Build a non-retriable INVALID_INPUT error."""
    return LaunchGateError(ErrorCode.INVALID_INPUT, message, retriable=False, details=details)


def launch_failed(message: str, details: Optional[Dict[str, Any]] = None) -> LaunchGateError:
    """Build a retriable LAUNCH_FAILED error."""
    return LaunchGateError(ErrorCode.LAUNCH_FAILED, message, retriable=True, details=details)


class DriverLaunchError(Exception):
    """Raised by automation drivers when the application process fails to come up.

    Drivers that captured the child's output attach it here so the
    orchestrator can scan it for a DevTools endpoint during attach fallback.
    """

    def __init__(
        self,
        message: str,
        stdout: Optional[List[str]] = None,
        stderr: Optional[List[str]] = None
    ):
        self.stdout = list(stdout or [])
        self.stderr = list(stderr or [])
        super().__init__(message)

    @property
    def details(self) -> Dict[str, Any]:
        return {"stdout": self.stdout, "stderr": self.stderr}


def error_message(error: BaseException) -> str:
    """Return the message text of any exception."""
    if isinstance(error, LaunchGateError):
        return error.message
    return str(error)


def error_response(error: Exception) -> Dict[str, Any]:
    """
    Convert any exception to the terminal error shape.

    Args:
        error: Exception to convert

    Returns:
        Error dictionary; unknown exceptions become INTERNAL_ERROR
    """
    if isinstance(error, LaunchGateError):
        return error.to_dict()

    return {
        "code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(error),
        "retriable": False,
        "details": {"type": type(error).__name__},
    }

"""
Structured Exception Hierarchy for Kola

This module provides the exception hierarchy shared by the test harness and
the platform backends, with user-facing messages and suggestions for error
resolution.

Key Features:
- Structured exceptions for authoring, provisioning, deployment and test errors
- Stage-identifying messages so a failed cluster run names the failing step
- Suggested actions for error resolution
- Debug information available only in verbose mode
- Exit codes distinguishing usage errors, test failures and success
"""

import sys
import traceback
from typing import Optional, Dict, Any, List
from enum import IntEnum


class ErrorCode(IntEnum):
    """Standard exit codes for the application."""
    SUCCESS = 0
    TEST_FAILED = 1
    USAGE_ERROR = 2
    CONFIGURATION_ERROR = 11
    PROVISIONING_ERROR = 12
    INTERNAL_ERROR = 15


class KolaError(Exception):
    """
    Base exception class for all kola errors.

    Provides structured error information with user-friendly messages
    and suggested actions for resolution.
    """

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        """
        Initialize kola error with structured information.

        Args:
            message: User-friendly error message
            suggestion: Suggested action to resolve the error
            error_code: Exit code for the error
            details: Additional error details (shown only in verbose mode)
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    def format_error(self, verbose_level: int = 0) -> str:
        """
        Format error message based on verbosity level.

        Args:
            verbose_level: 0=basic, 1=verbose, 2=debug, 3=full details

        Returns:
            Formatted error message
        """
        lines = [f"Error: {self.message}"]

        if self.suggestion:
            lines.append(f"Suggestion: {self.suggestion}")

        if verbose_level >= 1 and self.details:
            lines.append("\nDetails:")
            for key, value in self.details.items():
                lines.append(f"  {key}: {value}")

        if verbose_level >= 2 and self.cause:
            lines.append(f"\nCaused by: {type(self.cause).__name__}: {str(self.cause)}")

        if verbose_level >= 3:
            lines.append("\nStack trace:")
            tb = traceback.format_exc()
            if tb and tb != 'NoneType: None\n':
                lines.append(tb)
            else:
                lines.append("(No active exception - stack trace not available)")

        return "\n".join(lines)


# Configuration Errors

class ConfigurationError(KolaError):
    """Raised when there are configuration-related issues."""

    def __init__(self, message: str, config_file: Optional[str] = None, **kwargs):
        suggestion = "Check your kola.yaml format and values."
        if config_file:
            suggestion += f" Configuration file: {config_file}"
            kwargs['details'] = kwargs.get('details', {})
            kwargs['details']['config_file'] = config_file
        super().__init__(
            message=message,
            suggestion=suggestion,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            **kwargs
        )


# Registry Errors

class RegistryError(KolaError):
    """Base class for test registry errors."""

    def __init__(self, message: str, **kwargs):
        if 'error_code' not in kwargs:
            kwargs['error_code'] = ErrorCode.USAGE_ERROR
        super().__init__(message=message, **kwargs)


class DuplicateTestError(RegistryError):
    """Raised when a test name is registered twice."""

    def __init__(self, name: str, **kwargs):
        super().__init__(
            message=f"test already registered with same name: {name}",
            suggestion="Test names must be unique. Rename one of the tests.",
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"name": name},
            **kwargs
        )
        self.name = name


class TestNotFoundError(RegistryError):
    """Raised when a test name is not registered."""

    __test__ = False

    def __init__(self, name: str, available: Optional[List[str]] = None, **kwargs):
        hint = ""
        if available and len(available) <= 10:
            hint = f"\nRegistered tests: {', '.join(sorted(available))}"
        elif available:
            hint = f"\nFound {len(available)} registered tests. Use 'kola list' to see all."
        super().__init__(
            message=f"Test '{name}' not found",
            suggestion=f"Please check the test name spelling.{hint}",
            details={"name": name},
            **kwargs
        )


class BadPatternError(RegistryError):
    """Raised when a glob pattern is malformed."""

    def __init__(self, pattern: str, reason: str = "syntax error in pattern", **kwargs):
        super().__init__(
            message=f"{reason}: {pattern!r}",
            suggestion="Glob patterns support '*', '?', closed '[...]' classes and '\\' escapes.",
            details={"pattern": pattern},
            **kwargs
        )
        self.pattern = pattern


# Provisioning Errors

class ProvisioningError(KolaError):
    """Base class for cluster and machine provisioning errors."""

    def __init__(self, message: str, **kwargs):
        if 'error_code' not in kwargs:
            kwargs['error_code'] = ErrorCode.PROVISIONING_ERROR
        super().__init__(message=message, **kwargs)


class NamespaceError(ProvisioningError):
    """Raised when a network namespace cannot be created, entered or closed."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('suggestion', (
            "Network namespace operations require root privileges. Check:\n"
            "  1. You are running as root (or with CAP_SYS_ADMIN)\n"
            "  2. iproute2 is installed ('ip netns' works)\n"
            "  3. /run/netns is writable"
        ))
        super().__init__(message, **kwargs)


class SSHAgentError(ProvisioningError):
    """Raised when the cluster SSH agent cannot be started or used."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('suggestion', "Ensure OpenSSH client tools (ssh-agent, ssh-keygen, ssh-add) are installed.")
        super().__init__(message, **kwargs)


class DnsmasqError(ProvisioningError):
    """Raised when the DHCP/DNS helper fails."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('suggestion', "Ensure dnsmasq is installed and no other DHCP server owns the bridge.")
        super().__init__(message, **kwargs)


class TapError(ProvisioningError):
    """Raised when tap creation or bridge attachment fails at a given stage."""

    def __init__(self, stage: str, cause: Optional[Exception] = None, **kwargs):
        super().__init__(
            f"{stage}: {cause}" if cause is not None else stage,
            details={"stage": stage},
            cause=cause,
            **kwargs
        )
        self.stage = stage


class MachineError(ProvisioningError):
    """Raised when a machine cannot be created or destroyed."""
    pass


class DiscoveryError(ProvisioningError):
    """Raised when a discovery endpoint cannot be allocated."""

    def __init__(self, service: str, reason: str, **kwargs):
        super().__init__(
            f"discovery service {service} failed: {reason}",
            suggestion="Check network access to the discovery service or set discovery.service in kola.yaml.",
            details={"service": service},
            **kwargs
        )


class InvalidPlatformError(ProvisioningError):
    """Raised when a test names a platform with no backend."""

    def __init__(self, platform: str, available: Optional[List[str]] = None, **kwargs):
        super().__init__(
            f"Invalid platform: {platform}",
            suggestion=f"Supported platforms: {', '.join(available or [])}",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            details={"platform": platform},
            **kwargs
        )


class ClusterError(ProvisioningError):
    """Raised when a cluster run fails before the test body executes."""
    pass


# Execution Errors

class ExecutionError(KolaError):
    """Base class for execution-related errors."""
    pass


class CommandExecutionError(ExecutionError):
    """Raised when a local or remote command fails."""

    def __init__(self, command: str, exit_code: int, error_output: str = "", **kwargs):
        output = error_output.strip()
        message = f"command {command!r} failed with exit code {exit_code}"
        if output:
            message += f": {output}"
        super().__init__(
            message=message,
            error_code=ErrorCode.INTERNAL_ERROR,
            details={
                "command": command,
                "exit_code": exit_code,
                "error_output": error_output
            },
            **kwargs
        )
        self.command = command
        self.exit_code = exit_code
        self.output = error_output


class DeploymentError(ExecutionError):
    """Raised when the native helper cannot be copied to a machine."""
    pass


class TestFailure(KolaError):
    """Raised by test bodies to report a failed check."""

    __test__ = False

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('error_code', ErrorCode.TEST_FAILED)
        super().__init__(message=message, **kwargs)


def first_error(*errors: Optional[BaseException]) -> Optional[BaseException]:
    """Return the first non-None error, or None."""
    for err in errors:
        if err is not None:
            return err
    return None


# Error Handler Utility

class ErrorHandler:
    """Utility class for consistent error handling across the application."""

    @staticmethod
    def handle_error(error: Exception, verbose_level: int = 0) -> int:
        """
        Handle an error and return appropriate exit code.

        Args:
            error: The exception to handle
            verbose_level: Verbosity level (0-3)

        Returns:
            Exit code for the application
        """
        if isinstance(error, KolaError):
            print(error.format_error(verbose_level), file=sys.stderr)
            return error.error_code

        print(f"Error: {error}", file=sys.stderr)
        if verbose_level >= 1:
            print(f"\nError type: {type(error).__name__}", file=sys.stderr)
        if verbose_level >= 3:
            print("\nStack trace:", file=sys.stderr)
            traceback.print_exc(file=sys.stderr)

        return ErrorCode.INTERNAL_ERROR

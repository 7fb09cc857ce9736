"""
Capitan - Error Taxonomy
═════════════════════════
ConfigError       unreadable / malformed config source, fatal before any action
RuntimeCallError  an engine operation failed, aborts the current pass
HookFailure       a before.* / after.* hook exited non-zero
AlreadyAbsent     container missing during teardown, recovered by the caller
"""

from typing import Optional


class CapitanError(Exception):
    """Base class for everything the CLI turns into exit code 1."""


class ConfigError(CapitanError):
    """Raised when the config command cannot be run or its output parsed."""
    def __init__(self, message: str, line_number: Optional[int] = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class RuntimeCallError(CapitanError):
    """Raised when a docker operation on a container or image fails."""
    def __init__(self, operation: str, target: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.target = target
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed for '{target}'{detail}")


class HookFailure(CapitanError):
    """Raised when a hook command exits non-zero."""
    def __init__(self, hook_name: str, owner: str = "", exit_code: Optional[int] = None):
        self.hook_name = hook_name
        self.owner = owner
        self.exit_code = exit_code
        where = f" for '{owner}'" if owner else ""
        code = f" (exit {exit_code})" if exit_code is not None else ""
        super().__init__(f"hook {hook_name}{where} failed{code}")


class AlreadyAbsent(CapitanError):
    """Raised by the runtime when a teardown target no longer exists."""
    def __init__(self, name: str, operation: str = ""):
        self.name = name
        self.operation = operation
        super().__init__(f"container '{name}' does not exist")

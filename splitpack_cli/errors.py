"""Exceptions raised by the builder, bundler and configuration layers."""

from __future__ import annotations

from typing import List, Optional


class SplitpackError(Exception):
    """Base class for every error surfaced to the CLI."""


class ResolutionError(SplitpackError):
    """A specifier could not be matched to a file on disk."""

    def __init__(self, specifier: str, importer: Optional[str] = None):
        self.specifier = specifier
        self.importer = importer
        if importer:
            message = f"Cannot resolve '{specifier}' imported from '{importer}'"
        else:
            message = f"Cannot resolve entrypoint '{specifier}'"
        super().__init__(message)


class CompilationError(SplitpackError):
    """The compiler reported errors for a module or bundle."""

    def __init__(self, target: str, messages: List[str]):
        self.target = target
        self.messages = list(messages)
        detail = "\n".join(self.messages) if self.messages else "unknown error"
        super().__init__(f"Failed to compile '{target}':\n{detail}")


class MalformedImportError(SplitpackError):
    """A raw import statement could not be analyzed."""

    def __init__(self, statement: str, reason: str):
        self.statement = statement
        self.reason = reason
        super().__init__(f"{reason}: {statement!r}")


class ConfigError(SplitpackError):
    """Invalid project configuration."""


class ModuleReadError(SplitpackError):
    """A module or asset could not be read from disk."""

    def __init__(self, module_path: str, reason: str):
        self.module_path = module_path
        self.reason = reason
        super().__init__(f"Cannot read '{module_path}': {reason}")


class HookError(SplitpackError):
    """A prebuild/postbuild script exited with an error."""

    def __init__(self, script: str, returncode: int):
        self.script = script
        self.returncode = returncode
        super().__init__(f"Build script '{script}' exited with code {returncode}")

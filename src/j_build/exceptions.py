"""Custom exceptions for j-build."""

from __future__ import annotations


class JBuildError(Exception):
    """Base exception for j-build."""


class DescriptorNotFoundError(JBuildError):
    """Raised when a pom.xml file cannot be found."""


class DescriptorParseError(JBuildError):
    """Raised when a pom.xml file cannot be parsed."""


class DescriptorModelError(JBuildError):
    """Raised when required Maven model fields are missing or invalid."""


class PropertyExpansionError(JBuildError):
    """Raised when a `${...}` expression is malformed."""


class MalformedVersionError(JBuildError):
    """Raised when a version range cannot be parsed."""


class ResolutionError(JBuildError):
    """Raised when the dependency graph cannot be resolved."""


class MissingDependencyError(ResolutionError):
    """Raised when a required dependency cannot be located.

    Attributes:
        coordinate: The `g:a:v` key of the missing dependency.
        dependent: The `g:a:v` key of the project that declared it.
    """

    def __init__(self, coordinate: str, dependent: str, reason: str = "not found") -> None:
        super().__init__(f"Missing dependency {coordinate} (for {dependent}): {reason}")
        self.coordinate = coordinate
        self.dependent = dependent


class DownloadError(ResolutionError):
    """Raised when no configured repository yields an artifact."""


class CompileError(JBuildError):
    """Raised when the compiler reports errors."""

    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class BuildIOError(JBuildError):
    """Raised when the filesystem fails during build, clean or packaging."""

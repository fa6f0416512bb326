"""
Error types and message helpers for the retention cleaner.

Every failure the sweep can hit is an ActionableError subclass so the CLI can
print one formatted message with suggested fixes and the identifiers involved
(context name, digest, tag) before exiting.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONFIGURATION = "configuration"
    PARSE = "parse"
    KUBERNETES = "kubernetes"
    REGISTRY = "registry"
    SAFETY = "safety"
    EXECUTION = "execution"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str, category: Optional[ErrorCategory] = None,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification (defaults to the class category)
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        if category is not None:
            self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    @property
    def kind(self) -> str:
        return type(self).__name__

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class ConfigError(ActionableError):
    """Bad or missing required input, detected before any external call"""
    category = ErrorCategory.CONFIGURATION


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails"""


class ParseError(ActionableError):
    """Input (duration, timestamp, JSON) could not be parsed"""
    category = ErrorCategory.PARSE


class InvalidDurationFormat(ParseError):
    pass


class UnparseableTimestamp(ParseError):
    pass


class ContextResolutionError(ActionableError):
    """The local kubeconfig contexts could not be enumerated"""
    category = ErrorCategory.KUBERNETES


class ClusterQueryError(ActionableError):
    """Listing pod images in one context failed"""
    category = ErrorCategory.KUBERNETES

    def __init__(self, context: str, error: Any, **kwargs):
        self.context = context
        super().__init__(
            message=f"Failed to get images from context {context}: {error}",
            details={"context": context, "error_type": type(error).__name__},
            **kwargs,
        )


class MetadataFetchError(ActionableError):
    """The manifest listing query failed"""
    category = ErrorCategory.REGISTRY


class MetadataParseError(ParseError):
    """The manifest listing did not deserialize into manifest records"""
    category = ErrorCategory.REGISTRY


class ImageInUseError(ActionableError):
    """A deletion candidate is running in a cluster"""
    category = ErrorCategory.SAFETY

    def __init__(self, tag: str, context: str, image: str, digest: str = ""):
        self.tag = tag
        self.context = context
        self.image = image
        self.digest = digest
        super().__init__(
            message=f"Image with tag {tag} is running in the k8s context {context}",
            suggestions=[
                "Move the retention window back with a larger --ago or an earlier --timestamp",
                f"Roll the workloads in context {context} onto a newer tag before retrying",
            ],
            details={"tag": tag, "context": context, "running_image": image, "digest": digest or "n/a"},
        )


class DeletionExecutionError(ActionableError):
    """A purge or single-image delete call failed"""
    category = ErrorCategory.EXECUTION


def create_subscription_error(subscription: str, error: Exception) -> ConfigError:
    """Create actionable error for a failed `az account set`"""
    return ConfigError(
        message=f"Failed to set az subscription {subscription}",
        suggestions=[
            "Are you logged in? (az login)",
            f"Verify the subscription exists: az account show --subscription {subscription}",
        ],
        details={"subscription": subscription, "error_type": type(error).__name__, "error_message": str(error)},
    )


def create_context_resolution_error(error: Exception) -> ContextResolutionError:
    """Create actionable error for kubeconfig context enumeration failures"""
    suggestions = [
        "Verify your kubeconfig is readable (kubectl config get-contexts)",
        "Pass the contexts explicitly with --contexts instead of --all-contexts",
    ]
    if "no such file" in str(error).lower() or "invalid kube-config" in str(error).lower():
        suggestions.insert(0, "Set KUBECONFIG_PATH or --kubeconfig to an existing kubeconfig file")

    return ContextResolutionError(
        message=f"Error parsing all contexts from your kube config: {error}",
        suggestions=suggestions,
        details={"error_type": type(error).__name__, "error_message": str(error)},
    )


def create_metadata_fetch_error(registry: str, repository: str, error: Exception) -> MetadataFetchError:
    """Create actionable error for manifest listing failures"""
    error_str = str(error).lower()

    suggestions = [
        f"Verify the registry name is correct: {registry}",
        f"Verify the repository exists: az acr repository show --name {registry} --repository {repository}",
        "Check that the Azure CLI is installed and on PATH",
    ]
    if "login" in error_str or "unauthorized" in error_str or "credentials" in error_str:
        suggestions.insert(0, "Log in again with az login / az acr login")

    return MetadataFetchError(
        message=f"Failed to retrieve manifest information from repository {repository}",
        suggestions=suggestions,
        details={
            "registry": registry,
            "repository": repository,
            "error_type": type(error).__name__,
            "error_message": str(error),
        },
    )

"""
┌──────────────────────────────────────────────────────────────┐
│                    Exception Handling Flow                   │
│                                                              │
│  [Error] → [Classify] → [Log] → [Reject / Degrade] → [UI]    │
│                                                              │
│  Registry:  Duplicate type → Invalid definition              │
│  Modules:   Load error → Timeout (isolated per module)       │
│  Commands:  Bad reference → Cycle → Container → Invariant    │
│  Render:    Missing definition → Placeholder                 │
└──────────────────────────────────────────────────────────────┘

Exception classes for PageStudio
Flow: Error occurrence → Classification → Structured logging → Rejection or placeholder
"""

from typing import Any, Dict, List, Optional
import structlog

logger = structlog.get_logger()


class PageStudioException(Exception):
    """
    Base exception class for PageStudio.

    Exception Handling Flow:
    1. error_occurred() → Capture error details and context
    2. classify_error() → Stable error code per subclass
    3. log_error() → Record error with structured logging
    4. surface() → Caller shows ``user_message`` or aggregates the failure

    Features:
    - Structured error context
    - Stable error codes
    - Human-readable message for the editor UI
    """

    log_level = "error"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize base exception."""
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

        # Log the exception
        getattr(logger, self.log_level)(
            "PageStudio exception occurred",
            error_type=self.__class__.__name__,
            message=message,
            error_code=error_code,
            details=self.details,
        )

    @property
    def user_message(self) -> str:
        """Message suitable for showing to the person editing the page."""
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# REGISTRY
# =============================================================================


class DuplicateTypeError(PageStudioException):
    """
    Component type collision across different sources.

    A type key is owned by exactly one source at a time. Re-registering from
    the same module is a reload and never raises this error.
    """

    def __init__(
        self,
        component_type: str,
        existing_source: Optional[str] = None,
        incoming_source: Optional[str] = None,
        error_code: str = "DUPLICATE_COMPONENT_TYPE",
    ):
        """Initialize duplicate type error."""
        message = (
            f"Component type '{component_type}' is already registered by "
            f"'{existing_source}', cannot register it from '{incoming_source}'"
        )
        super().__init__(
            message=message,
            error_code=error_code,
            details={
                "component_type": component_type,
                "existing_source": existing_source,
                "incoming_source": incoming_source,
            },
        )
        self.component_type = component_type
        self.existing_source = existing_source
        self.incoming_source = incoming_source


class InvalidDefinitionError(PageStudioException):
    """Malformed component definition rejected at registration."""

    def __init__(
        self,
        reason: str,
        component_type: Optional[str] = None,
        module_id: Optional[str] = None,
        error_code: str = "INVALID_COMPONENT_DEFINITION",
    ):
        """Initialize invalid definition error."""
        origin = f"module '{module_id}'" if module_id else "core"
        label = f"'{component_type}'" if component_type else "<unnamed>"
        super().__init__(
            message=f"Invalid component definition {label} from {origin}: {reason}",
            error_code=error_code,
            details={
                "component_type": component_type,
                "module_id": module_id,
                "reason": reason,
            },
        )
        self.reason = reason
        self.component_type = component_type
        self.module_id = module_id


# =============================================================================
# MODULES
# =============================================================================


class ModuleLoadError(PageStudioException):
    """
    Per-module import or validation failure.

    Module Load Error Flow:
    1. Import or bundle validation fails for one module
    2. Capture module id and reason
    3. Record in the batch report
    4. Sibling modules keep loading
    """

    log_level = "warning"

    def __init__(
        self,
        module_id: str,
        reason: str,
        module_name: Optional[str] = None,
        error_code: str = "MODULE_LOAD_ERROR",
    ):
        """Initialize module load error."""
        super().__init__(
            message=f"Failed to load module '{module_name or module_id}': {reason}",
            error_code=error_code,
            details={"module_id": module_id, "module_name": module_name, "reason": reason},
        )
        self.module_id = module_id
        self.module_name = module_name
        self.reason = reason


class ModuleLoadTimeoutError(ModuleLoadError):
    """Module import did not finish inside the configured timeout."""

    def __init__(self, module_id: str, timeout_seconds: float, module_name: Optional[str] = None):
        super().__init__(
            module_id=module_id,
            reason=f"import timed out after {timeout_seconds} seconds",
            module_name=module_name,
            error_code="MODULE_LOAD_TIMEOUT",
        )
        self.timeout_seconds = timeout_seconds


# =============================================================================
# COMMANDS
# =============================================================================


class CommandRejectedError(PageStudioException):
    """Base for every rejection raised at the command choke point."""

    log_level = "info"


class InvalidReferenceError(CommandRejectedError):
    """Command references an id that does not exist in the document."""

    def __init__(
        self,
        node_id: Optional[str],
        role: str = "node",
        error_code: str = "INVALID_REFERENCE",
    ):
        """Initialize invalid reference error."""
        super().__init__(
            message=f"Unknown {role} id '{node_id}'",
            error_code=error_code,
            details={"node_id": node_id, "role": role},
        )
        self.node_id = node_id
        self.role = role


class CyclicMoveError(CommandRejectedError):
    """Move would place a subtree inside itself."""

    def __init__(
        self,
        node_id: str,
        target_parent_id: str,
        error_code: str = "CYCLIC_MOVE",
    ):
        """Initialize cyclic move error."""
        super().__init__(
            message=f"Cannot move '{node_id}' into '{target_parent_id}': target is inside the moved subtree",
            error_code=error_code,
            details={"node_id": node_id, "target_parent_id": target_parent_id},
        )
        self.node_id = node_id
        self.target_parent_id = target_parent_id

    @property
    def user_message(self) -> str:
        return "cannot nest a component inside itself"


class ContainerError(CommandRejectedError):
    """Target parent does not accept children, or not this type of child."""

    def __init__(
        self,
        parent_id: str,
        reason: str,
        child_type: Optional[str] = None,
        error_code: str = "NOT_A_CONTAINER",
    ):
        super().__init__(
            message=f"Cannot place component in '{parent_id}': {reason}",
            error_code=error_code,
            details={"parent_id": parent_id, "child_type": child_type, "reason": reason},
        )
        self.parent_id = parent_id
        self.child_type = child_type
        self.reason = reason


class InvariantViolationError(CommandRejectedError):
    """Structural invariants did not hold; nothing was committed."""

    def __init__(
        self,
        violations: List[str],
        command: Optional[str] = None,
        error_code: str = "INVARIANT_VIOLATION",
    ):
        """Initialize invariant violation error."""
        summary = violations[0] if violations else "unknown violation"
        super().__init__(
            message=f"Document invariant violated: {summary}",
            error_code=error_code,
            details={"violations": list(violations), "command": command},
        )
        self.violations = list(violations)
        self.command = command


# =============================================================================
# RENDERING
# =============================================================================


class MissingDefinitionError(PageStudioException):
    """
    Render-time lookup miss.

    Never propagated to the renderer: the render resolver wraps it into a
    placeholder so the node's data survives until the module is reinstalled.
    """

    log_level = "warning"

    def __init__(
        self,
        component_type: str,
        module_name: Optional[str] = None,
        error_code: str = "MISSING_DEFINITION",
    ):
        """Initialize missing definition error."""
        suffix = f" (provided by module '{module_name}')" if module_name else ""
        super().__init__(
            message=f"No definition registered for component type '{component_type}'{suffix}",
            error_code=error_code,
            details={"component_type": component_type, "module_name": module_name},
        )
        self.component_type = component_type
        self.module_name = module_name


# =============================================================================
# TEMPLATES
# =============================================================================


class NotFoundError(PageStudioException):
    """Resource lookup failed."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        error_code: str = "NOT_FOUND",
    ):
        """Initialize not found error."""
        details = {}
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(message=message, error_code=error_code, details=details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(PageStudioException):
    """Resource already exists under the same key."""

    def __init__(
        self,
        message: str,
        conflicting_resource: Optional[str] = None,
        error_code: str = "RESOURCE_CONFLICT",
    ):
        """Initialize conflict error."""
        details = {}
        if conflicting_resource:
            details["conflicting_resource"] = conflicting_resource

        super().__init__(message=message, error_code=error_code, details=details)
        self.conflicting_resource = conflicting_resource

"""
Domain error taxonomy for the task engine.

Every error carries a stable ``code``, the HTTP status the API layer maps it
to, and a ``context`` dict (task id, offending field, attempted value) so a
caller can render a precise message.
"""

from __future__ import annotations

import uuid
from typing import Any, Iterable, Optional


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


class TaskEngineError(Exception):
    code = "TASK_ENGINE_ERROR"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: _jsonable(v) for k, v in context.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "status": self.status_code,
            "context": self.context,
        }


class TaskNotFound(TaskEngineError):
    code = "TASK_NOT_FOUND"
    status_code = 404

    def __init__(self, task_id: uuid.UUID) -> None:
        super().__init__(f"Task {task_id} not found", task_id=task_id)


class TemplateNotFound(TaskEngineError):
    code = "TEMPLATE_NOT_FOUND"
    status_code = 404

    def __init__(self, template_id: uuid.UUID) -> None:
        super().__init__(f"Template {template_id} not found", template_id=template_id)


class InvalidTransition(TaskEngineError):
    code = "INVALID_TRANSITION"
    status_code = 422

    def __init__(
        self,
        task_id: uuid.UUID,
        from_status: Any,
        to_status: Any,
        allowed: Iterable[Any],
        blocked_by: Optional[Iterable[uuid.UUID]] = None,
    ) -> None:
        allowed_values = sorted(_jsonable(s) for s in allowed)
        message = (
            f"Cannot transition task {task_id} from '{_jsonable(from_status)}' "
            f"to '{_jsonable(to_status)}'. Allowed: {allowed_values}"
        )
        context: dict[str, Any] = {}
        if blocked_by is not None:
            context["blocked_by"] = sorted(str(t) for t in blocked_by)
            message = f"Task {task_id} cannot start while prerequisites are incomplete: {context['blocked_by']}"
        super().__init__(
            message,
            task_id=task_id,
            field="status",
            from_status=from_status,
            attempted=to_status,
            allowed=allowed_values,
            **context,
        )


class CircularReference(TaskEngineError):
    code = "CIRCULAR_REFERENCE"
    status_code = 409

    def __init__(self, task_id: uuid.UUID, target_id: Optional[uuid.UUID], message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Moving task {task_id} under {target_id} would create a circular hierarchy",
            task_id=task_id,
            field="parent_task_id",
            attempted=target_id,
        )


class CircularDependency(CircularReference):
    code = "CIRCULAR_DEPENDENCY"

    def __init__(self, task_id: uuid.UUID, depends_on_id: uuid.UUID) -> None:
        super().__init__(
            task_id,
            depends_on_id,
            message=f"Dependency {task_id} -> {depends_on_id} would create a circular dependency",
        )
        self.context["field"] = "depends_on_task_id"


class DuplicateDependency(TaskEngineError):
    code = "DUPLICATE_DEPENDENCY"
    status_code = 409

    def __init__(self, task_id: uuid.UUID, depends_on_id: uuid.UUID) -> None:
        super().__init__(
            "Dependency already exists",
            task_id=task_id,
            field="depends_on_task_id",
            attempted=depends_on_id,
        )


class UnassignableUser(TaskEngineError):
    code = "UNASSIGNABLE_USER"
    status_code = 422

    def __init__(self, task_id: uuid.UUID, user_id: Optional[int], reason: str) -> None:
        super().__init__(
            f"Cannot assign task {task_id} to user {user_id}: {reason}",
            task_id=task_id,
            field="user_id",
            attempted=user_id,
            reason=reason,
        )


class InvalidReassignment(TaskEngineError):
    code = "INVALID_REASSIGNMENT"
    status_code = 422

    def __init__(self, task_id: uuid.UUID, user_id: int, reason: str) -> None:
        super().__init__(
            f"Cannot reassign task {task_id} to user {user_id}: {reason}",
            task_id=task_id,
            field="user_id",
            attempted=user_id,
            reason=reason,
        )


class InvalidDueDate(TaskEngineError):
    code = "INVALID_DUE_DATE"
    status_code = 422

    def __init__(self, due_date: Any, task_id: Optional[uuid.UUID] = None) -> None:
        super().__init__(
            f"Due date {due_date} cannot be in the past",
            task_id=task_id,
            field="due_date",
            attempted=str(due_date),
        )


class InactiveTemplate(TaskEngineError):
    code = "INACTIVE_TEMPLATE"
    status_code = 422

    def __init__(self, template_id: uuid.UUID, version: int) -> None:
        super().__init__(
            "Cannot instantiate inactive template",
            template_id=template_id,
            field="is_active",
            version=version,
        )


class MissingVariable(TaskEngineError):
    code = "MISSING_VARIABLE"
    status_code = 422

    def __init__(self, template_id: uuid.UUID, name: str) -> None:
        super().__init__(
            f"Required variable '{name}' not provided for template instantiation",
            template_id=template_id,
            field="variables",
            variable=name,
        )
        self.variable = name


class InvalidTemplate(TaskEngineError):
    code = "INVALID_TEMPLATE"
    status_code = 422

    def __init__(self, template_id: Optional[uuid.UUID], reason: str, **context: Any) -> None:
        super().__init__(
            f"Invalid template data: {reason}",
            template_id=template_id,
            field="template_data",
            **context,
        )


class TemplateTooLarge(TaskEngineError):
    code = "TEMPLATE_TOO_LARGE"
    status_code = 422

    def __init__(self, template_id: uuid.UUID, task_count: int, limit: int) -> None:
        super().__init__(
            f"Template defines {task_count} tasks; the limit is {limit}",
            template_id=template_id,
            field="template_data.tasks",
            attempted=task_count,
            limit=limit,
        )


class ConcurrentModification(TaskEngineError):
    code = "CONCURRENT_MODIFICATION"
    status_code = 409

    def __init__(self, task_id: uuid.UUID, expected_version: int, actual_version: Optional[int] = None) -> None:
        super().__init__(
            f"Task {task_id} was modified concurrently",
            task_id=task_id,
            field="version",
            attempted=expected_version,
            actual=actual_version,
        )


class DependencyEndpointUnresolved(TaskEngineError):
    """Internal: a template dependency whose endpoints are not both mapped.

    Never raised to callers; instantiation skips and counts these edges.
    """

    code = "DEPENDENCY_ENDPOINT_UNRESOLVED"
    status_code = 422

    def __init__(self, task_ref: Optional[str], depends_on_ref: Optional[str]) -> None:
        super().__init__(
            "Template dependency endpoint not found in task id map",
            task_id=task_ref,
            depends_on_task_id=depends_on_ref,
        )


class DependencyNotFound(TaskEngineError):
    code = "DEPENDENCY_NOT_FOUND"
    status_code = 404

    def __init__(self, task_id: uuid.UUID, depends_on_id: uuid.UUID) -> None:
        super().__init__(
            "Dependency not found",
            task_id=task_id,
            field="depends_on_task_id",
            attempted=depends_on_id,
        )


class EnquiryNotFound(TaskEngineError):
    code = "ENQUIRY_NOT_FOUND"
    status_code = 404

    def __init__(self, enquiry_id: int) -> None:
        super().__init__(f"Enquiry {enquiry_id} not found", enquiry_id=enquiry_id)

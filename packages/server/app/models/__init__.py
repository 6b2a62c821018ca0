# SQLModel definitions, imported here so the metadata is populated for Alembic.
from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin  # noqa: F401
from .task import Task  # noqa: F401
from .assignments import TaskAssignment, TaskAssignmentHistory  # noqa: F401
from .dependency import TaskDependency  # noqa: F401
from .history import TaskHistory  # noqa: F401
from .template import TaskTemplate  # noqa: F401
from .enquiry import Enquiry  # noqa: F401

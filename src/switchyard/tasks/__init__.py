"""
Task scheduling, queues and workers.
"""

from .agent_tasks import (
    RESUME_AGENT_TASK_NAME,
    ApprovalResolutionPayload,
    ResumeAgentPayload,
    create_resume_agent_task,
)
from .definition import TaskDefinition, TaskHandler, TaskOptions, define_task
from .errors import invalid_task_state_error, task_not_found_error, task_operation_error
from .models import (
    PRIORITY_RANK,
    TASK_STATUSES,
    QueueJob,
    QueueJobInput,
    QueueStats,
    TaskPriority,
    TaskRecord,
    TaskStatus,
    decode_task_record,
    encode_task_record,
)
from .queue import (
    InMemoryQueueClient,
    QueueClient,
    QueueClientFactory,
    QueueRegistry,
    create_queue_client_from_env,
)
from .repo import TasksRepo
from .scheduler import TaskScheduler
from .service import TasksService
from .task_queue import TaskQueue
from .worker import TaskOutcome, TaskWorker

__all__ = [
    "TaskDefinition",
    "TaskHandler",
    "TaskOptions",
    "define_task",
    "TaskRecord",
    "TaskStatus",
    "TaskPriority",
    "TASK_STATUSES",
    "PRIORITY_RANK",
    "encode_task_record",
    "decode_task_record",
    "QueueJob",
    "QueueJobInput",
    "QueueStats",
    "QueueClient",
    "QueueClientFactory",
    "QueueRegistry",
    "InMemoryQueueClient",
    "create_queue_client_from_env",
    "TaskQueue",
    "TasksRepo",
    "TaskScheduler",
    "TaskWorker",
    "TaskOutcome",
    "TasksService",
    "task_not_found_error",
    "invalid_task_state_error",
    "task_operation_error",
    "RESUME_AGENT_TASK_NAME",
    "ApprovalResolutionPayload",
    "ResumeAgentPayload",
    "create_resume_agent_task",
]

"""
In-memory registry of upload tasks.

The registry owns every UploadTask of the running app and tells
subscribers about each change. Nothing here is persisted; tasks live until
they are cleared or the process exits.
"""

import uuid
from collections.abc import Callable
from typing import Any, Dict, List, Optional

import structlog

from omnibucket.models.provider import utc_now
from omnibucket.models.upload_models import UploadStatus, UploadTask

logger = structlog.get_logger(__name__)

TaskListener = Callable[[UploadTask], None]


class UploadTaskRegistry:
    """Holds upload tasks and notifies subscribers of every change."""

    def __init__(self):
        self.tasks: Dict[str, UploadTask] = {}
        self._listeners: Dict[str, TaskListener] = {}

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        token = str(uuid.uuid4())
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def _notify(self, task: UploadTask) -> None:
        for listener in list(self._listeners.values()):
            try:
                listener(task)
            except Exception as e:
                logger.error("Task listener failed", task_id=task.id, error=str(e))

    def add_task(self, task: UploadTask) -> str:
        """Track a new task."""
        self.tasks[task.id] = task
        self._notify(task)
        return task.id

    def get_task(self, task_id: str) -> Optional[UploadTask]:
        return self.tasks.get(task_id)

    def get_task_status(self, task_id: str) -> Dict[str, Any]:
        """Get the current status of a task."""
        task = self.tasks.get(task_id)
        if task is None:
            return {"status": "not_found"}
        return {
            "status": task.status.value,
            "progress": task.progress,
            "error": task.error,
            "updated_at": task.updated_at,
        }

    def update_task_status(self, task_id: str, **kwargs: Any) -> Optional[UploadTask]:
        """
        Update fields of a task.

        Completed and errored tasks are final; status changes on them are
        ignored.
        """
        task = self.tasks.get(task_id)
        if task is None:
            return None
        new_status = kwargs.get("status")
        if new_status is not None and task.is_terminal and new_status != task.status:
            logger.warning(
                "Ignoring status change of finished task",
                task_id=task_id,
                status=task.status.value,
                requested=UploadStatus(new_status).value,
            )
            kwargs.pop("status")
        for name, value in kwargs.items():
            setattr(task, name, value)
        task.updated_at = utc_now()
        self._notify(task)
        return task

    def list_tasks(self) -> List[UploadTask]:
        return sorted(self.tasks.values(), key=lambda task: task.created_at)

    def active_tasks(self) -> List[UploadTask]:
        return [task for task in self.list_tasks() if not task.is_terminal]

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in UploadStatus}
        for task in self.tasks.values():
            counts[task.status.value] += 1
        return counts

    def clear_finished(self) -> int:
        """Remove completed and errored tasks."""
        finished = [task_id for task_id, task in self.tasks.items() if task.is_terminal]
        for task_id in finished:
            self.tasks.pop(task_id, None)
        logger.info(f"Cleared {len(finished)} finished upload tasks")
        return len(finished)

    def clear(self) -> None:
        self.tasks.clear()

"""
Task store for NexusRAG.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from nexusrag.models import Task, TaskRequest

# Configure logging
logger = logging.getLogger(__name__)


class InMemoryTaskStore:
    """Thread-safe task store; a title may exist once per workspace."""

    def __init__(self):
        self._tasks: Dict[Tuple[str, str], Task] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(workspace_id: str, title: str) -> Tuple[str, str]:
        return workspace_id, title.strip().lower()

    def create_task(self, request: TaskRequest) -> bool:
        """
        Insert a task unless one with the same title exists in the workspace.

        Returns:
            True if inserted, False if it was a duplicate
        """
        key = self._key(request.workspace_id, request.title)
        with self._lock:
            if key in self._tasks:
                logger.info(f"Task '{request.title}' already exists, skipping")
                return False
            self._tasks[key] = Task(**request.model_dump())
        logger.info(f"Created task '{request.title}' in workspace {request.workspace_id}")
        return True

    def get_task(self, workspace_id: str, title: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(self._key(workspace_id, title))

    def list_tasks(self, workspace_id: Optional[str] = None) -> List[Task]:
        """List tasks in creation order, optionally for one workspace."""
        with self._lock:
            tasks = list(self._tasks.values())
        if workspace_id is not None:
            tasks = [t for t in tasks if t.workspace_id == workspace_id]
        return tasks

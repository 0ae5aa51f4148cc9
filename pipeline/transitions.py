"""Execution of due transition tasks.

A relocation keeps the user's old membership active for the grace period.
When the scheduled deactivation comes due this module ends it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from core.config_loader import TransitionConfig
from core.exceptions import RepositoryError
from core.interfaces import DEACTIVATE_MEMBERSHIP, CircleRepository

logger = logging.getLogger(__name__)


@dataclass
class TransitionBatchResult:
    """Outcome of one pass over due tasks."""
    due: int = 0
    completed: int = 0
    already_inactive: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def execute_task(repo: CircleRepository, task: Dict[str, Any]) -> bool:
    """
    Run a single task. Returns True if the membership was deactivated,
    False if it was already inactive.

    Raises:
        ValueError: Unknown task type or malformed payload
        RepositoryWriteError: If the deactivation cannot be written
    """
    if task['task_type'] != DEACTIVATE_MEMBERSHIP:
        raise ValueError(f"Unknown task type: {task['task_type']}")

    payload = task.get('payload') or {}
    user_id = payload.get('user_id')
    circle_id = payload.get('circle_id')
    if not user_id or not circle_id:
        raise ValueError(f"Malformed payload for task {task['id']}: {payload}")

    return repo.deactivate_membership(user_id, circle_id)


def process_due_transitions(
    repo: CircleRepository,
    now: datetime,
    config: TransitionConfig = None
) -> TransitionBatchResult:
    """
    Execute every pending task with due_at <= now (up to batch_size).

    Tasks that are not yet due are never touched. A failing task records the
    error and is retried on the next pass until max_attempts is reached.

    Raises:
        RepositoryReadError: If due tasks cannot be listed
    """
    config = config or TransitionConfig()
    result = TransitionBatchResult()

    tasks = repo.list_due_tasks(now, limit=config.batch_size)
    result.due = len(tasks)
    if tasks:
        logger.info(f"Processing {len(tasks)} due transition tasks")

    for task in tasks:
        try:
            deactivated = execute_task(repo, task)
            repo.mark_task_done(task['id'])
        except (RepositoryError, ValueError) as e:
            logger.error(f"Transition task {task['id']} failed: {e}")
            result.failed += 1
            result.errors.append(f"{task['id']}: {e}")
            try:
                repo.mark_task_failed(task['id'], str(e), config.max_attempts)
            except RepositoryError as mark_error:
                logger.error(f"Could not record failure for task {task['id']}: {mark_error}")
            continue

        if deactivated:
            result.completed += 1
            logger.info(
                f"Ended transition window: user {task['payload'].get('user_id')} "
                f"left circle {task['payload'].get('circle_id')}"
            )
        else:
            result.already_inactive += 1
            logger.debug(f"Membership for task {task['id']} was already inactive")

    return result

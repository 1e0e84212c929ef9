"""
FastAPI router module for tasks.

Key Endpoints:
- GET    /tasks                  - List tasks (newest first)
- POST   /tasks                  - Create a task
- PATCH  /tasks/{task_id}        - Partial update
- POST   /tasks/{task_id}/done   - Mark as Done (?done=false reopens it)
- DELETE /tasks/{task_id}        - Delete a task

Task states are To Do / Doing / Waiting / Done. Request bodies may still use
the legacy labels (Pending, InProgress, Overdue, Completed); they are mapped
on input.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Query, status

from pulse_backend.api.deals import not_found
from pulse_backend.core.dependencies import StoreDep
from pulse_backend.models.schemas import Task, TaskCreate, TaskUpdate
from pulse_backend.services.store import EntityNotFoundError


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[Task])
async def list_tasks(store: StoreDep) -> List[Task]:
    try:
        return await store.get_tasks()
    except Exception as e:
        logger.error(f"Error listing tasks: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list tasks: {str(e)}")


@router.post("", response_model=Task, status_code=status.HTTP_201_CREATED)
async def create_task(payload: TaskCreate, store: StoreDep) -> Task:
    try:
        task = await store.add_task(payload)
        logger.info(f"Created task {task.id}: {task.title}")
        return task
    except Exception as e:
        logger.error(f"Error creating task: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create task: {str(e)}")


@router.patch("/{task_id}", response_model=Task)
async def update_task(task_id: str, patch: TaskUpdate, store: StoreDep) -> Task:
    try:
        return await store.update_task(task_id, patch)
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error updating task {task_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update task: {str(e)}")


@router.post("/{task_id}/done", response_model=Task)
async def mark_task_done(
    task_id: str,
    store: StoreDep,
    done: bool = Query(True, description="False moves the task back to To Do"),
) -> Task:
    try:
        return await store.mark_task_done(task_id, done)
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error completing task {task_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update task: {str(e)}")


@router.delete("/{task_id}")
async def delete_task(task_id: str, store: StoreDep) -> Dict[str, Any]:
    try:
        await store.delete_task(task_id)
        logger.info(f"Deleted task {task_id}")
        return {'success': True, 'id': task_id}
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error deleting task {task_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to delete task: {str(e)}")

"""Scheduler routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from localdex.api.dependencies import get_scheduler
from localdex.models.dto import TaskResponse, TaskRunResponse
from localdex.scheduler import Scheduler

router = APIRouter()


@router.get("/scheduler/tasks", response_model=list[TaskResponse], summary="List scheduled tasks")
def list_tasks(scheduler: Scheduler = Depends(get_scheduler)) -> list[TaskResponse]:
    return [TaskResponse.from_task(task) for task in scheduler.list_tasks()]


@router.get("/scheduler/tasks/{task_id}", response_model=TaskResponse, summary="Task state and recent runs")
def get_task(
    task_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    scheduler: Scheduler = Depends(get_scheduler),
) -> TaskResponse:
    task = scheduler.get_task(task_id)
    return TaskResponse.from_task(task, scheduler.history(task_id, limit))


@router.post(
    "/scheduler/tasks/{task_id}/run",
    response_model=TaskRunResponse,
    status_code=202,
    summary="Run a task now",
)
def run_task(task_id: str, scheduler: Scheduler = Depends(get_scheduler)) -> TaskRunResponse:
    future = scheduler.run_now(task_id)
    return TaskRunResponse(task_id=task_id, status="started" if future is not None else "already_running")


__all__ = ["router"]

"""Moderation API routers."""

from fastapi import APIRouter

from . import queue, submissions

router = APIRouter()
router.include_router(queue.router)
router.include_router(submissions.router)

__all__ = ["router"]

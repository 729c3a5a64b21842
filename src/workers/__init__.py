"""
Workers module: Celery tasks for document analysis, plus merge locks.

Architecture:
    FastAPI API  ──dispatch──>  Redis Queue  ──consume──>  Celery Worker
                                                              │
    PostgreSQL (upload status, candidates)  <─────────────────┘

Start worker:
    celery -A src.workers.celery_app worker -l info -P solo -Q document_analysis

The -P solo pool is required because tasks use asyncio.run() internally.
"""

from src.workers.celery_app import celery_app
from src.workers.locks import pet_merge_lock

__all__ = [
    "celery_app",
    "pet_merge_lock",
]

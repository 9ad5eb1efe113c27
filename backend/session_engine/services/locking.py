"""Per-key mutual exclusion for record mutations.

Mutations for one (session, participant) pair, one (exam, participant) pair
or one attempt are serialized behind a lock named by that key. Session
counters and lifecycle changes use a per-session key. Different keys never
contend. The process-local registry is used unless ``REDIS_URL``
is configured, in which case Redis locks serialize across workers.
"""
import threading
from contextlib import contextmanager
from typing import Callable, Dict, List, TypeVar
import redis
from redis.exceptions import LockError
from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from session_engine import db
from session_engine.utils.errors import ConflictingUpdate

T = TypeVar('T')

def record_key(session_id: int, participant_id: int) -> str:
    return f'record:{session_id}:{participant_id}'

def attempt_allocation_key(exam_id: int, participant_id: int) -> str:
    return f'exam:{exam_id}:{participant_id}'

def attempt_key(attempt_id: int) -> str:
    return f'attempt:{attempt_id}'

def submission_allocation_key(assignment_id: int, participant_id: int) -> str:
    return f'assignment:{assignment_id}:{participant_id}'

def submission_key(submission_id: int) -> str:
    return f'submission:{submission_id}'

def assignment_key(assignment_id: int) -> str:
    return f'assignment-state:{assignment_id}'

def session_key(session_id: int) -> str:
    return f'session:{session_id}'

def exam_key(exam_id: int) -> str:
    return f'exam-state:{exam_id}'

class LocalLockRegistry:
    """Reference-counted ``threading.Lock`` per key."""

    def __init__(self, timeout: float = None):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1

        lock = entry[0]
        acquired = lock.acquire(timeout=self.timeout) if self.timeout else lock.acquire()
        try:
            if not acquired:
                raise ConflictingUpdate(f"Timed out waiting for {key}")
            yield
        finally:
            if acquired:
                lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def active_keys(self) -> List[str]:
        with self._guard:
            return list(self._locks)

class RedisLockRegistry:
    """Distributed locks shared by every worker process."""

    PREFIX = 'session-engine:lock:'

    def __init__(self, client: redis.Redis, timeout: float = 10):
        self.client = client
        self.timeout = timeout

    @contextmanager
    def hold(self, key: str):
        lock = self.client.lock(
            f'{self.PREFIX}{key}',
            timeout=self.timeout,
            blocking_timeout=self.timeout
        )
        if not lock.acquire():
            raise ConflictingUpdate(f"Timed out waiting for {key}")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                current_app.logger.warning(f"Lock {key} expired before release")

def build_lock_registry(config):
    timeout = config.get('LOCK_TIMEOUT_SECONDS', 10)
    redis_url = config.get('REDIS_URL')

    if redis_url:
        return RedisLockRegistry(redis.from_url(redis_url), timeout=timeout)
    return LocalLockRegistry(timeout=timeout)

def get_lock_registry():
    return current_app.extensions['lock_registry']

def commit_or_conflict(message: str = None) -> None:
    """Commit, turning optimistic-concurrency failures into ConflictingUpdate."""
    try:
        db.session.commit()
    except (StaleDataError, IntegrityError) as e:
        db.session.rollback()
        raise ConflictingUpdate(message) from e

def retry_on_conflict(operation: Callable[[], T], limit: int = None) -> T:
    """Run ``operation``, retrying a bounded number of times on ConflictingUpdate."""
    if limit is None:
        limit = current_app.config.get('CONFLICT_RETRY_LIMIT', 3)

    attempt = 0
    while True:
        try:
            return operation()
        except ConflictingUpdate as e:
            db.session.rollback()
            attempt += 1
            if attempt > limit:
                current_app.logger.warning(f"Giving up after {attempt} conflicts: {e.message}")
                raise
            current_app.logger.info(f"Retrying after conflict ({attempt}/{limit}): {e.message}")

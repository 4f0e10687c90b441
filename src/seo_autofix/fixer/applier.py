"""Fix applier.

Commits approved fixes to the content store. Every attempt snapshots the
target first and appends a FixRecord whether or not the write succeeded,
then moves the issue to ``fixed`` or ``failed``. Rollback writes the
snapshot back through the same strategy and appends a reversing record;
existing records are never modified.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from ..models import (
    ApplyResult,
    FixErrorCode,
    FixRecord,
    Issue,
    IssueStatus,
    ProposedFix,
    RollbackResult,
)
from ..storage import SQLiteContentStore, SQLiteStore
from .strategies import get_strategy

logger = logging.getLogger(__name__)


class LockTimeout(Exception):
    """A resource lock could not be acquired in time."""
    pass


class ResourceLocks:
    """In-process mutual exclusion keyed by resource identifier."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        if not lock.acquire(timeout=self.timeout):
            raise LockTimeout(f"Timed out after {self.timeout}s waiting for {key}")
        try:
            yield
        finally:
            lock.release()


class FixApplier:
    """Applies approved fixes and rolls them back."""

    def __init__(
        self,
        store: SQLiteStore,
        content_store: SQLiteContentStore,
        principal: str = "autofix",
        locks: Optional[ResourceLocks] = None,
    ):
        """Initialize the applier.

        Args:
            store: Issue store and fix record log
            content_store: Target resources
            principal: Recorded as ``applied_by`` on every record
            locks: Shared lock table; share one instance between concurrent runs
        """
        self.store = store
        self.content_store = content_store
        self.principal = principal
        self.locks = locks or ResourceLocks()

    def _record(self, issue: Issue, **fields) -> int:
        record = FixRecord(issue_id=issue.id, fix_type=issue.issue_type, applied_by=self.principal, **fields)
        return self.store.append_fix_record(record)

    def apply(self, issue_id: int, issue: Issue, fix: ProposedFix) -> ApplyResult:
        """Apply one approved fix.

        Args:
            issue_id: ID of the issue being fixed
            issue: The issue itself
            fix: The approved fix

        Returns:
            ApplyResult; errors are recorded, never raised
        """
        strategy = get_strategy(issue.issue_type)
        if strategy is None:
            message = f"No apply logic for issue type {issue.issue_type.value}"
            fix_id = self._record(issue, success=False, error_message=message)
            self.store.update_issue_status(issue_id, IssueStatus.FAILED)
            return ApplyResult(
                issue_id=issue_id,
                fix_id=fix_id,
                success=False,
                error_code=FixErrorCode.NO_APPLY_LOGIC,
                error_message=message,
            )

        before_value: Optional[str] = None
        after_value: Optional[str] = None
        error_code: Optional[FixErrorCode] = None
        error_message: Optional[str] = None

        try:
            with self.locks.hold(strategy.resource_key(issue)):
                before_value = strategy.read_current(issue, self.content_store)
                after_value = strategy.build_value(issue, before_value, fix)
                strategy.write(issue, self.content_store, after_value)
        except LockTimeout as e:
            error_code, error_message = FixErrorCode.RESOURCE_LOCKED, str(e)
        except Exception as e:
            logger.exception(f"Failed to apply fix for issue {issue_id}")
            error_code, error_message = FixErrorCode.WRITE_FAILED, str(e)

        success = error_code is None
        fix_id = self._record(
            issue,
            before_value=before_value,
            after_value=after_value if success else None,
            success=success,
            error_message=error_message,
            rollback_available=success and bool(before_value),
        )
        self.store.update_issue_status(issue_id, IssueStatus.FIXED if success else IssueStatus.FAILED)

        if success:
            logger.info(f"Applied {issue.issue_type.value} fix for issue {issue_id} (record {fix_id})")
        else:
            logger.warning(f"Fix for issue {issue_id} failed: {error_message}")

        return ApplyResult(
            issue_id=issue_id,
            fix_id=fix_id,
            success=success,
            error_code=error_code,
            error_message=error_message,
        )

    def rollback(self, fix_id: int) -> RollbackResult:
        """Restore the value captured before a fix and reopen its issue."""
        record = self.store.get_fix_record(fix_id)
        if record is None or not record.rollback_available:
            return RollbackResult(
                fix_id=fix_id,
                success=False,
                message="Fix not found or rollback not available",
                error_code=FixErrorCode.FIX_NOT_FOUND,
            )

        if self.store.get_reversal(fix_id) is not None:
            return RollbackResult(
                fix_id=fix_id,
                success=False,
                message=f"Fix {fix_id} has already been rolled back",
                issue_id=record.issue_id,
                error_code=FixErrorCode.ALREADY_ROLLED_BACK,
            )

        issue = self.store.get_issue(record.issue_id)
        if issue is None:
            return RollbackResult(
                fix_id=fix_id,
                success=False,
                message=f"Issue {record.issue_id} not found",
                issue_id=record.issue_id,
                error_code=FixErrorCode.ISSUE_NOT_FOUND,
            )

        strategy = get_strategy(issue.issue_type)
        if strategy is None:
            return RollbackResult(
                fix_id=fix_id,
                success=False,
                message=f"No apply logic for issue type {issue.issue_type.value}",
                issue_id=issue.id,
                error_code=FixErrorCode.NO_APPLY_LOGIC,
            )

        try:
            with self.locks.hold(strategy.resource_key(issue)):
                current = strategy.read_current(issue, self.content_store)
                strategy.rollback(issue, self.content_store, record.before_value)
        except LockTimeout as e:
            return RollbackResult(
                fix_id=fix_id,
                success=False,
                message=str(e),
                issue_id=issue.id,
                error_code=FixErrorCode.RESOURCE_LOCKED,
            )
        except Exception as e:
            logger.exception(f"Rollback of fix {fix_id} failed")
            return RollbackResult(
                fix_id=fix_id,
                success=False,
                message=f"Rollback failed: {e}",
                issue_id=issue.id,
                error_code=FixErrorCode.WRITE_FAILED,
            )

        reversal_id = self._record(
            issue,
            before_value=current,
            after_value=record.before_value,
            success=True,
            reverts_fix_id=fix_id,
        )
        self.store.update_issue_status(issue.id, IssueStatus.PENDING)
        logger.info(f"Rolled back fix {fix_id} for issue {issue.id} (reversal record {reversal_id})")

        return RollbackResult(
            fix_id=fix_id,
            success=True,
            message="Fix rolled back successfully",
            issue_id=issue.id,
            reversal_fix_id=reversal_id,
            restored_value=record.before_value,
        )

    def fix_stats(self) -> dict:
        return self.store.fix_stats()

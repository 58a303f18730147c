"""Content-addressed reconciliation of two directory trees.

A coarse upstream signal (a changed manifest hash) often flags files whose
decoded content is in fact identical to the previous release. The
reconciler compares a candidate tree against a reference tree path by
path, using MD5 digests of the file contents, deletes candidate files
identical to their reference counterpart, and prunes the directories this
leaves empty. What remains in the candidate tree is what really changed.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from assetdelta.core.config import ReconcileConfig
from assetdelta.core.retry import RetryExhaustedError, RetryPolicy, is_locked_error, retry_call
from assetdelta.core.utils import list_files, md5_file

logger = structlog.get_logger()


@dataclass(frozen=True)
class ReconciliationPair:
    """A relative path present in both trees with both content digests."""

    path: str
    reference_hash: str
    candidate_hash: str

    @property
    def identical(self) -> bool:
        return self.reference_hash == self.candidate_hash


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass.

    Attributes:
        added: Candidate paths with no reference counterpart
        modified: Shared paths whose content differs
        removed: Candidate paths deleted as identical
        failed: Shared paths that could not be compared or deleted
        pruned_dirs: Directories removed because they became empty
    """

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    pruned_dirs: list[Path] = field(default_factory=list)

    @property
    def changed(self) -> list[str]:
        """Candidate paths that need downstream processing."""
        return sorted([*self.added, *self.modified])


def prune_empty_dirs(root: Path, remove_root: bool = True) -> list[Path]:
    """Remove directories under root that contain nothing, bottom-up.

    Removing a directory can empty its parent, which is then removed in
    the same pass. Directories that vanish mid-walk count as removed.

    Args:
        root: Tree to prune
        remove_root: Also remove root itself when it ends up empty

    Returns:
        Directories that were removed, deepest first
    """
    removed: list[Path] = []
    if not root.exists():
        return removed

    for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
        directory = Path(dirpath)
        if directory == root and not remove_root:
            continue
        try:
            with os.scandir(directory) as entries:
                if any(True for _ in entries):
                    continue
            directory.rmdir()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.debug("prune_skip", directory=str(directory), error=str(e))
            continue
        removed.append(directory)

    if removed:
        logger.info("empty_dirs_pruned", root=str(root), count=len(removed))
    return removed


class TreeReconciler:
    """Deletes candidate files whose content matches the reference tree.

    Args:
        max_workers: Concurrent file comparisons
        lock_retries: Attempts for reading or deleting a locked file
        lock_retry_delay: Fixed delay between those attempts in seconds
        remove_empty_root: Remove the candidate root if nothing is left
        sleep: Sleep function used between lock retries
    """

    def __init__(
        self,
        max_workers: int = 5,
        lock_retries: int = 5,
        lock_retry_delay: float = 0.1,
        remove_empty_root: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_workers = max_workers
        self.policy = RetryPolicy.fixed(lock_retries, lock_retry_delay)
        self.remove_empty_root = remove_empty_root
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: ReconcileConfig) -> TreeReconciler:
        return cls(
            max_workers=config.max_workers,
            lock_retries=config.lock_retries,
            lock_retry_delay=config.lock_retry_delay,
            remove_empty_root=config.remove_empty_root,
        )

    def hash_file(self, path: Path) -> str:
        """MD5 of a file, retrying while it is locked."""
        return retry_call(
            lambda: md5_file(path),
            policy=self.policy,
            is_retryable=is_locked_error,
            operation=f"read {path.name}",
            sleep=self._sleep,
        )

    def delete_file(self, path: Path) -> None:
        """Delete a file, retrying while it is locked."""
        retry_call(
            lambda: path.unlink(missing_ok=True),
            policy=self.policy,
            is_retryable=is_locked_error,
            operation=f"delete {path.name}",
            sleep=self._sleep,
        )

    def compare(self, relative: str, reference: Path, candidate: Path) -> ReconciliationPair:
        """Hash both sides of a shared path."""
        return ReconciliationPair(
            path=relative,
            reference_hash=self.hash_file(reference),
            candidate_hash=self.hash_file(candidate),
        )

    def reconcile(self, reference: Path, candidate: Path) -> ReconcileReport:
        """Reconcile candidate against reference.

        Args:
            reference: Tree of the previous release's files
            candidate: Tree of the new release's files; modified in place

        Returns:
            Report whose ``changed`` lists what is new or really changed

        Raises:
            ValueError: If either tree does not exist
        """
        if not reference.is_dir():
            raise ValueError(f"Reference tree not found: {reference}")
        if not candidate.is_dir():
            raise ValueError(f"Candidate tree not found: {candidate}")

        reference_files = list_files(reference)
        candidate_files = list_files(candidate)

        logger.info(
            "reconcile_start",
            reference=str(reference),
            candidate=str(candidate),
            reference_files=len(reference_files),
            candidate_files=len(candidate_files),
        )

        report = ReconcileReport()
        report.added = sorted(p for p in candidate_files if p not in reference_files)
        shared = [p for p in candidate_files if p in reference_files]
        lock = threading.Lock()

        def process(relative: str) -> None:
            candidate_path = candidate_files[relative]
            pair = self.compare(relative, reference_files[relative], candidate_path)
            if pair.identical:
                self.delete_file(candidate_path)
                logger.debug("unchanged_removed", path=relative)
                with lock:
                    report.removed.append(relative)
            else:
                with lock:
                    report.modified.append(relative)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_path = {executor.submit(process, relative): relative for relative in shared}
            for future in as_completed(future_to_path):
                relative = future_to_path[future]
                try:
                    future.result()
                except RetryExhaustedError as e:
                    logger.warning("reconcile_file_locked", path=relative, attempts=e.attempts)
                    with lock:
                        report.failed[relative] = str(e)
                except OSError as e:
                    logger.warning("reconcile_file_failed", path=relative, error=str(e))
                    with lock:
                        report.failed[relative] = str(e)

        report.modified.sort()
        report.removed.sort()
        report.pruned_dirs = prune_empty_dirs(candidate, remove_root=self.remove_empty_root)

        logger.info(
            "reconcile_complete",
            added=len(report.added),
            modified=len(report.modified),
            removed=len(report.removed),
            failed=len(report.failed),
            pruned_dirs=len(report.pruned_dirs),
        )
        return report

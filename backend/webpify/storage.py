"""Storage lifecycle: role directories, periodic TTL sweeps, delayed one-shot deletions."""
import logging
import shutil
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from webpify import config
from webpify.errors import StorageError

logger = logging.getLogger("webpify.storage")


class StorageRole(str, Enum):
    STAGING = "uploads"
    SINGLE_OUTPUT = "converted"
    BATCH_OUTPUT = "batch"


@dataclass(frozen=True)
class RetentionPolicy:
    role: StorageRole
    max_age_seconds: float


@dataclass
class RoleUsage:
    count: int = 0
    size_bytes: int = 0


@dataclass
class SweepReport:
    removed: dict[StorageRole, int] = field(default_factory=dict)
    failed: dict[StorageRole, int] = field(default_factory=dict)
    skipped: bool = False

    @property
    def total_removed(self) -> int:
        return sum(self.removed.values())


def format_bytes(num: int) -> str:
    """Human-readable size, e.g. 1536 -> '1.5 KB'."""
    if num <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(num)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def _entry_size(path: Path) -> int:
    if path.is_dir():
        return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())
    return path.stat().st_size


class StorageLifecycleManager:
    """
    Owns the staging, single-output and batch-output directories.

    Each role directory is an arena keyed by generated filenames; there is no
    catalog. Files leave an arena through a TTL sweep, a delayed one-shot
    deletion, or directly through delete_path().

    Sweeps can be driven manually (sweep(), force_sweep()) or by the background
    sweeper started with start(). ``clock`` returns epoch seconds and is compared
    with file mtimes.
    """

    def __init__(
        self,
        roots: dict[StorageRole, Path],
        policies: Iterable[RetentionPolicy],
        sweep_interval: float = 15 * 60,
        forced_max_age: float = 5 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.roots = {role: Path(path) for role, path in roots.items()}
        self.policies = {p.role: p for p in policies}
        missing = [r.value for r in StorageRole if r not in self.roots or r not in self.policies]
        if missing:
            raise ValueError(f"Missing root or retention policy for roles: {', '.join(missing)}")
        self.sweep_interval = sweep_interval
        self.forced_max_age = forced_max_age
        self.clock = clock
        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._timers: set[threading.Timer] = set()
        self._timers_lock = threading.Lock()

    @classmethod
    def from_config(cls) -> "StorageLifecycleManager":
        return cls(
            roots={
                StorageRole.STAGING: config.UPLOAD_DIR,
                StorageRole.SINGLE_OUTPUT: config.OUTPUT_DIR,
                StorageRole.BATCH_OUTPUT: config.BATCH_DIR,
            },
            policies=[
                RetentionPolicy(StorageRole.STAGING, config.STAGING_MAX_AGE_SECONDS),
                RetentionPolicy(StorageRole.SINGLE_OUTPUT, config.OUTPUT_MAX_AGE_SECONDS),
                RetentionPolicy(StorageRole.BATCH_OUTPUT, config.BATCH_MAX_AGE_SECONDS),
            ],
            sweep_interval=config.SWEEP_INTERVAL_SECONDS,
            forced_max_age=config.FORCED_SWEEP_MAX_AGE_SECONDS,
        )

    def path_for(self, role: StorageRole) -> Path:
        return self.roots[role]

    def ensure_dirs(self) -> None:
        for role, path in self.roots.items():
            path.mkdir(parents=True, exist_ok=True)
            logger.debug("Storage role %s at %s", role.value, path)

    # Lifecycle

    def start(self) -> None:
        """Create directories and start the background sweeper (sweeps once right away)."""
        self.ensure_dirs()
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="storage-sweeper", daemon=True)
        self._thread.start()
        logger.info("Storage sweeper started (interval=%ss)", self.sweep_interval)

    def stop(self, purge: bool = False) -> None:
        """
        Stop the sweeper. With purge, cancel pending deletions and remove every
        stored artifact; otherwise pending deletions still fire on schedule.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        if purge:
            with self._timers_lock:
                timers = list(self._timers)
                self._timers.clear()
            for timer in timers:
                timer.cancel()
            removed = self.purge()
            logger.info("Purged %s stored artifacts on shutdown", removed)
        elif self.pending_deletions:
            logger.info("Leaving %s delayed deletions pending", self.pending_deletions)
        logger.info("Storage sweeper stopped")

    def purge(self) -> int:
        """Delete every entry of every role regardless of age."""
        removed = 0
        for root in self.roots.values():
            if not root.exists():
                continue
            for entry in list(root.iterdir()):
                if self.delete_path(entry):
                    removed += 1
        return removed

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("Scheduled sweep failed")
            self._stop_event.wait(self.sweep_interval)

    # Sweeps

    def sweep(self, max_age_override: Optional[float] = None) -> SweepReport:
        """
        Delete entries older than their role's TTL (or max_age_override for all roles).
        If another sweep is still running, this one is skipped.
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("Sweep already in progress, skipping")
            return SweepReport(skipped=True)
        try:
            report = SweepReport()
            for role in StorageRole:
                max_age = self.policies[role].max_age_seconds if max_age_override is None else max_age_override
                removed, failed = self._sweep_role(role, max_age)
                report.removed[role] = removed
                report.failed[role] = failed
            if report.total_removed:
                logger.info(
                    "Sweep removed %s entries (%s)",
                    report.total_removed,
                    ", ".join(f"{r.value}={n}" for r, n in report.removed.items()),
                )
            return report
        finally:
            self._sweep_lock.release()

    def _sweep_role(self, role: StorageRole, max_age: float) -> tuple[int, int]:
        root = self.roots[role]
        try:
            entries = list(root.iterdir())
        except FileNotFoundError:
            return 0, 0
        except OSError as e:
            logger.warning("Could not read %s directory %s: %s", role.value, root, e)
            return 0, 0
        now = self.clock()
        removed = failed = 0
        for entry in entries:
            try:
                age = now - entry.stat().st_mtime
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Could not stat %s: %s", entry, e)
                failed += 1
                continue
            if age <= max_age:
                continue
            if self.delete_path(entry):
                removed += 1
                logger.info("Cleaned up old %s entry %s (age: %d minutes)", role.value, entry.name, age // 60)
            else:
                failed += 1
        return removed, failed

    def force_sweep(self) -> dict:
        """Operator cleanup: sweep every role with the short forced TTL. Returns byte counts."""
        before = self.usage()
        report = self.sweep(max_age_override=self.forced_max_age)
        after = self.usage()
        freed = {
            role: max(0, before[role].size_bytes - after[role].size_bytes)
            for role in StorageRole
        }
        logger.info("Forced sweep removed %s entries, freed %s", report.total_removed, format_bytes(sum(freed.values())))
        return {"before": before, "after": after, "freed": freed, "report": report}

    # Deletion

    def delete_path(self, path: Union[str, Path]) -> bool:
        """Remove a file or directory. Missing paths count as deleted. Failures are logged, not raised."""
        path = Path(path)
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning("Could not delete %s: %s", path, e)
            return False
        return True

    def schedule_deletion(self, path: Union[str, Path], delay: float) -> None:
        """Delete path once, ``delay`` seconds from now. There is no way to cancel it."""
        path = Path(path)

        def _fire() -> None:
            try:
                if self.delete_path(path):
                    logger.info("File cleaned up: %s", path.name)
            except Exception:
                logger.exception("Delayed deletion of %s failed", path)
            finally:
                with self._timers_lock:
                    self._timers.discard(timer)

        timer = threading.Timer(delay, _fire)
        timer.daemon = True
        with self._timers_lock:
            self._timers.add(timer)
        timer.start()
        logger.debug("Scheduled deletion of %s in %ss", path.name, delay)

    @property
    def pending_deletions(self) -> int:
        with self._timers_lock:
            return len(self._timers)

    # Introspection

    def usage(self) -> dict[StorageRole, RoleUsage]:
        """Per-role entry counts and byte totals. Raises StorageError if a role directory can't be read."""
        result: dict[StorageRole, RoleUsage] = {}
        for role, root in self.roots.items():
            usage = RoleUsage()
            try:
                entries = list(root.iterdir()) if root.exists() else []
            except OSError as e:
                raise StorageError("Failed to get storage information", details=str(e)) from e
            for entry in entries:
                try:
                    usage.size_bytes += _entry_size(entry)
                except FileNotFoundError:
                    # Removed between listing and stat.
                    continue
                except OSError as e:
                    logger.warning("Could not size %s: %s", entry, e)
                usage.count += 1
            result[role] = usage
        return result

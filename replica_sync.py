# /replica_sync.py
"""
Replica Sync
- One-way mirror of a source folder into a replica folder, one pass per interval.
- Each pass prunes replica entries missing from the source, then copies new files
  and updates changed ones.
- Change detection by MD5 content digest (or size + mtime with --compare mtime).
- Copies land through a temporary sibling + os.replace, never half-written.
- Empty source folders are mirrored; file/folder type clashes are deleted and replaced.
- Optional gitignore-style exclusions (--exclude, repeatable).
- Optional watch mode: source changes wake the scheduler before the interval ends.
- Styled console output:
  - COPY green
  - UPDATE cyan
  - DELETE yellow
  - errors red
- Log file is always plain: "<timestamp> - <message>".
- Ctrl+C / SIGTERM stop the worker at the next safe point (between files or phases).

Usage
  pip install watchdog pathspec colorama
  python replica_sync.py SOURCE REPLICA LOG_FILE
  python replica_sync.py "/src" "/dst" sync.log --interval 10 --exclude "*.tmp" --watch
"""

from __future__ import annotations

import argparse
import datetime as dt
import errno
import hashlib
import logging
import os
import shutil
import signal
import stat
import sys
import threading
import unicodedata
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from colorama import Fore, Style, just_fix_windows_console
from pathspec import GitIgnoreSpec
from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

LOGGER_NAME = "replica_sync"

DEFAULT_INTERVAL_SEC = 60.0
WATCH_SETTLE_SEC = 1.0
MTIME_TOLERANCE_SEC = 1.0
CHUNK_SIZE = 1024 * 1024

LOG_FORMAT = "%(asctime)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


# -------------------------
# Errors
# -------------------------

class SyncError(Exception):
    """Base class for everything this tool raises on purpose."""


class ConfigurationError(SyncError):
    """Bad arguments or paths; fatal at startup."""


class SynchronizationError(SyncError):
    """
    A pass could not finish.

    Carries the TreePath that failed (if known), the events emitted before the
    failure and, with keep_going, every per-entry failure of the pass.
    """

    def __init__(
        self,
        message: str,
        rel_path: Optional[str] = None,
        events: Iterable["SyncEvent"] = (),
        failures: Iterable["SynchronizationError"] = (),
    ):
        super().__init__(message)
        self.rel_path = rel_path
        self.events = list(events)
        self.failures = list(failures)

    @classmethod
    def from_os_error(cls, exc: OSError, rel_path: Optional[str]) -> "SynchronizationError":
        where = rel_path or "."
        if _is_transient_error(exc):
            return TransientIOError(f"{where}: {exc}", rel_path=rel_path)
        return SynchronizationError(f"{where}: {exc}", rel_path=rel_path)


class TransientIOError(SynchronizationError):
    """The entry vanished, is locked or access was denied mid-pass."""


def _is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, (FileNotFoundError, PermissionError)):
        return True
    winerror = getattr(exc, "winerror", None)
    if winerror in (32, 33):  # ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
        return True
    return getattr(exc, "errno", None) in {errno.EACCES, errno.EPERM, errno.EBUSY, errno.ENOENT}


# -------------------------
# Console styling
# -------------------------

ACTION_COLORS = {
    "COPY": Fore.GREEN,
    "UPDATE": Fore.CYAN,
    "DELETE": Fore.YELLOW,
    "MKDIR": Fore.YELLOW,
    "ATTR": Fore.MAGENTA,
}

PATH_COLORS = {True: Fore.YELLOW, False: Fore.WHITE + Style.BRIGHT}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except Exception:
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            return f"{Fore.RED}{base}{Style.RESET_ALL}"

        action = getattr(record, "action", None)
        if action and action in base:
            color = ACTION_COLORS.get(action, "")
            if record.levelno == logging.WARNING:
                color = Fore.RED
            if color:
                base = base.replace(action, f"{color}{action}{Style.RESET_ALL}", 1)

        path_text = getattr(record, "path_text", None)
        if path_text and path_text in base:
            pcolor = PATH_COLORS[bool(getattr(record, "is_dir", False))]
            base = base.replace(path_text, f"{pcolor}{path_text}{Style.RESET_ALL}")

        return base


def setup_logger(log_file: Path) -> logging.Logger:
    """Log to LOG_FILE (created if missing, appended) and to stdout."""
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    just_fix_windows_console()

    fh = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    fh.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    fh.setLevel(logging.INFO)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("Logging to: %s", log_file)
    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[str] = None,
    is_dir: bool = False,
    level: int = logging.INFO,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = path
        extra["is_dir"] = is_dir
    logger.log(level, f"{action} | {message}", extra=extra)


# -------------------------
# Config / CLI
# -------------------------

@dataclass(frozen=True)
class AppConfig:
    source_dir: Path
    replica_dir: Path
    log_file: Path
    interval_sec: float = DEFAULT_INTERVAL_SEC
    exclude: tuple[str, ...] = ()
    compare: str = "md5"
    keep_going: bool = False
    watch: bool = False
    once: bool = False


class UsageParser(argparse.ArgumentParser):
    """argparse that prints usage to stdout and raises instead of exiting."""

    def error(self, message: str):
        self.print_usage(sys.stdout)
        raise ConfigurationError(message)


def build_parser() -> argparse.ArgumentParser:
    p = UsageParser(prog="replica-sync", description="Keep a replica folder identical to a source folder.")
    p.add_argument("source", help="Folder to mirror from.")
    p.add_argument("replica", help="Folder kept identical to the source.")
    p.add_argument("log_file", help="Log file (created if missing, appended to).")
    p.add_argument("--interval", type=float, default=DEFAULT_INTERVAL_SEC, help="Seconds between passes (default 60).")
    p.add_argument("--exclude", action="append", default=[], metavar="PATTERN", help="gitignore-style pattern, relative to the source. Repeatable.")
    p.add_argument("--compare", choices=("md5", "mtime"), default="md5", help="How existing files are compared.")
    p.add_argument("--keep-going", action="store_true", help="Skip failing entries instead of aborting the pass.")
    p.add_argument("--watch", action="store_true", help="Also start a pass early when the source changes.")
    p.add_argument("--once", action="store_true", help="Run a single pass and exit.")
    return p


def parse_args(argv: list[str]) -> AppConfig:
    args = build_parser().parse_args(argv)
    if args.interval <= 0:
        raise ConfigurationError(f"--interval must be positive, got {args.interval}")
    return AppConfig(
        source_dir=Path(args.source),
        replica_dir=Path(args.replica),
        log_file=Path(args.log_file),
        interval_sec=args.interval,
        exclude=tuple(args.exclude),
        compare=args.compare,
        keep_going=args.keep_going,
        watch=args.watch,
        once=args.once,
    )


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def validate_paths(cfg: AppConfig) -> AppConfig:
    """Resolve paths, reject unusable layouts, create the replica folder."""
    source = cfg.source_dir.expanduser().resolve()
    replica = cfg.replica_dir.expanduser().resolve()
    log_file = cfg.log_file.expanduser().resolve()

    if not source.is_dir():
        raise ConfigurationError(f"Source folder does not exist or is not a folder: {source}")
    if source == replica:
        raise ConfigurationError("Source and replica folders must be different.")
    if _is_subpath(replica, source):
        raise ConfigurationError("Replica folder must NOT be inside source folder (would cause loops).")
    if _is_subpath(source, replica):
        raise ConfigurationError("Source folder must NOT be inside replica folder (would be pruned).")
    if _is_subpath(log_file, replica):
        raise ConfigurationError("Log file must NOT be inside replica folder (would be pruned).")
    if replica.exists() and not replica.is_dir():
        raise ConfigurationError(f"Replica path exists and is not a folder: {replica}")

    try:
        replica.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create replica folder {replica}: {e}") from e

    return replace(cfg, source_dir=source, replica_dir=replica, log_file=log_file)


# -------------------------
# Tree paths + exclusions
# -------------------------

CASE_INSENSITIVE = os.path.normcase("A") == "a"


def tree_path(root: Path, path: Path) -> str:
    """TreePath of PATH under ROOT, spelled exactly as on disk (POSIX separators)."""
    return path.relative_to(root).as_posix()


def path_key(rel: str, case_insensitive: bool = CASE_INSENSITIVE) -> str:
    """Matching key for a TreePath: Unicode NFC, case-folded where the OS folds case."""
    key = unicodedata.normalize("NFC", rel)
    return key.casefold() if case_insensitive else key


class IgnoreMatcher:
    """gitignore-style patterns plus exact TreePaths, both relative to the source root."""

    def __init__(self, patterns: Iterable[str] = (), exact: Iterable[str] = ()):
        self.patterns = list(patterns)
        self.spec = GitIgnoreSpec.from_lines(self.patterns)
        self.exact = {path_key(p) for p in exact}

    def is_ignored(self, rel: str, is_dir: bool = False) -> bool:
        if not rel or rel == ".":
            return False
        if path_key(rel) in self.exact:
            return True
        if not self.patterns:
            return False
        if is_dir and not rel.endswith("/"):
            rel += "/"
        return self.spec.match_file(rel)


def build_ignore(cfg: AppConfig) -> IgnoreMatcher:
    exact = []
    if _is_subpath(cfg.log_file, cfg.source_dir):
        # the log grows every pass; copying it would never settle
        exact.append(tree_path(cfg.source_dir.resolve(), cfg.log_file.resolve()))
    return IgnoreMatcher(cfg.exclude, exact)


# -------------------------
# Content comparison
# -------------------------

def md5_file(path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    h = hashlib.md5()
    with path.open("rb") as f:
        while True:
            b = f.read(chunk_size)
            if not b:
                break
            h.update(b)
    return h.hexdigest()


class DigestComparator:
    """
    Equality oracle over file contents.

    Files of different size are unequal without being read; otherwise both are
    streamed through MD5 and the digests compared. Timestamps and permissions
    are ignored. Nothing is cached, so every call reads both files in full.
    I/O errors propagate to the caller.
    """

    def digest(self, path: Path) -> str:
        return md5_file(path)

    def content_equals(self, a: Path, b: Path) -> bool:
        if a.stat().st_size != b.stat().st_size:
            return False
        return self.digest(a).lower() == self.digest(b).lower()


class TimestampComparator:
    """Cheap variant: same size and mtimes within TOLERANCE seconds."""

    def __init__(self, tolerance: float = MTIME_TOLERANCE_SEC):
        self.tolerance = tolerance

    def content_equals(self, a: Path, b: Path) -> bool:
        s1 = a.stat()
        s2 = b.stat()
        if s1.st_size != s2.st_size:
            return False
        return abs(s1.st_mtime - s2.st_mtime) <= self.tolerance


def make_comparator(mode: str):
    if mode == "md5":
        return DigestComparator()
    if mode == "mtime":
        return TimestampComparator()
    raise ConfigurationError(f"Unknown compare mode: {mode}")


# -------------------------
# Pass model
# -------------------------

class SyncKind(str, Enum):
    DELETED = "Deleted"
    COPIED = "Copied"
    UPDATED = "Updated"


EVENT_ACTIONS = {
    SyncKind.DELETED: "DELETE",
    SyncKind.COPIED: "COPY",
    SyncKind.UPDATED: "UPDATE",
}


@dataclass(frozen=True)
class SyncEvent:
    kind: SyncKind
    rel_path: str
    timestamp: dt.datetime
    is_dir: bool = False


def log_event(logger: logging.Logger, event: SyncEvent) -> None:
    log_action(logger, EVENT_ACTIONS[event.kind], event.rel_path, path=event.rel_path, is_dir=event.is_dir)


@dataclass(frozen=True)
class TreeEntry:
    rel: str
    path: Path
    is_dir: bool
    is_link: bool = False


@dataclass(frozen=True)
class PassResult:
    events: tuple[SyncEvent, ...] = ()
    error: Optional[SynchronizationError] = None
    cancelled: bool = False
    started_at: dt.datetime = field(default_factory=dt.datetime.now)

    @property
    def ok(self) -> bool:
        return self.error is None


# -------------------------
# Filesystem helpers
# -------------------------

def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _make_writable(path: Path) -> None:
    mode = path.lstat().st_mode
    if not mode & stat.S_IWUSR:
        path.chmod(stat.S_IMODE(mode) | stat.S_IWUSR)


def remove_file(path: Path) -> None:
    try:
        path.unlink()
    except PermissionError:
        # read-only replica files refuse unlink on Windows
        if path.is_symlink():
            raise
        _make_writable(path)
        path.unlink()


def _unlink_writable(func, name, exc: BaseException) -> None:
    # read-only replica files refuse unlink on Windows
    path = Path(name)
    if not isinstance(exc, PermissionError) or path.is_symlink():
        raise exc
    _make_writable(path)
    func(name)


def remove_tree(path: Path) -> None:
    # rmtree refuses a symlink itself and never descends into linked folders
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=_unlink_writable)
    else:
        shutil.rmtree(path, onerror=lambda func, name, info: _unlink_writable(func, name, info[1]))


def replace_file(src: Path, dst: Path) -> None:
    """Copy SRC over DST via a temporary sibling, so DST is whole or untouched."""
    ensure_parent(dst)
    tmp = dst.with_name(f".{dst.name}.{os.getpid()}.partial")
    try:
        shutil.copyfile(src, tmp)
        if dst.exists():
            _make_writable(dst)
        os.replace(tmp, dst)
    except BaseException:
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass
        raise


# -------------------------
# Reconciler
# -------------------------

class TreeReconciler:
    """
    One-way reconciliation of a replica tree against a source tree.

    Phase 1 deletes every replica entry whose TreePath is missing from the
    source (or is the other type there), deepest first. Phase 2 creates missing
    folders, copies missing files and updates files the comparator calls
    different. Phase 1 always finishes before Phase 2 starts.

    The reconciler keeps no state between passes; each call re-walks both trees.
    """

    def __init__(
        self,
        comparator=None,
        ignore: Optional[IgnoreMatcher] = None,
        logger: Optional[logging.Logger] = None,
        stop_event: Optional[threading.Event] = None,
        keep_going: bool = False,
        on_event: Optional[Callable[[SyncEvent], None]] = None,
    ):
        self.comparator = comparator or DigestComparator()
        self.ignore = ignore or IgnoreMatcher()
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.stop_event = stop_event
        self.keep_going = keep_going
        self.on_event = on_event or (lambda event: log_event(self.logger, event))
        self.case_insensitive = CASE_INSENSITIVE

    def synchronize(self, source_root: Path, replica_root: Path) -> list[SyncEvent]:
        events: list[SyncEvent] = []
        failures: list[SynchronizationError] = []

        if not source_root.is_dir():
            raise SynchronizationError(f"Source folder is missing: {source_root}")

        try:
            replica_root.mkdir(parents=True, exist_ok=True)
            source_index = self._scan(source_root, self.ignore, skip_dir_links=True)

            self._prune(source_index, replica_root, events, failures)
            if self.stop_requested():
                return events
            self._copy(source_index, replica_root, events, failures)
        except SynchronizationError as e:
            e.events = events
            e.failures = failures
            raise
        except OSError as e:
            raise SynchronizationError.from_os_error(e, None) from e

        if failures:
            raise SynchronizationError(
                f"{len(failures)} entr{'y' if len(failures) == 1 else 'ies'} failed",
                events=events,
                failures=failures,
            )
        return events

    # --- phases ---

    def _prune(self, source_index, replica_root, events, failures) -> None:
        replica_entries = self._scan(replica_root)
        for entry in sorted(replica_entries.values(), key=lambda e: e.rel, reverse=True):
            if self.stop_requested():
                return
            match = source_index.get(path_key(entry.rel, self.case_insensitive))
            if match is not None and match.is_dir == entry.is_dir and self._same_name(match, entry, replica_root):
                continue
            with self._entry(entry.rel, failures):
                if not os.path.lexists(entry.path):
                    continue
                if entry.is_dir:
                    remove_tree(entry.path)
                else:
                    remove_file(entry.path)
                self._emit(events, SyncKind.DELETED, entry)

    def _copy(self, source_index, replica_root, events, failures) -> None:
        for entry in sorted(source_index.values(), key=lambda e: e.rel):
            if self.stop_requested():
                return
            dst = replica_root / entry.rel
            with self._entry(entry.rel, failures):
                if entry.is_dir:
                    if not dst.is_dir():
                        dst.mkdir(parents=True, exist_ok=True)
                        log_action(self.logger, "MKDIR", entry.rel, path=entry.rel, is_dir=True)
                    continue

                if not dst.exists():
                    kind = SyncKind.COPIED
                elif not self.comparator.content_equals(entry.path, dst):
                    kind = SyncKind.UPDATED
                else:
                    continue

                replace_file(entry.path, dst)
                self._copy_attributes(entry, dst)
                self._emit(events, kind, entry)

    # --- helpers ---

    def _scan(
        self,
        root: Path,
        ignore: Optional[IgnoreMatcher] = None,
        skip_dir_links: bool = False,
    ) -> dict[str, TreeEntry]:
        """
        Index every entry under ROOT by TreePath key, minus ignored ones and their children.

        Symlinks are entries of their own and never count as folders, so nothing
        behind a link is walked or deleted. SKIP_DIR_LINKS drops links to folders.
        """
        entries = []
        for p in root.rglob("*"):
            is_link = p.is_symlink()
            if skip_dir_links and is_link and p.is_dir():
                continue
            entries.append(TreeEntry(rel=tree_path(root, p), path=p, is_dir=p.is_dir() and not is_link, is_link=is_link))
        index: dict[str, TreeEntry] = {}
        for entry in sorted(entries, key=lambda e: e.rel.count("/")):
            if ignore is not None:
                parent = entry.rel.rpartition("/")[0]
                if parent and path_key(parent, self.case_insensitive) not in index:
                    continue
                if ignore.is_ignored(entry.rel, is_dir=entry.is_dir):
                    continue
            index[path_key(entry.rel, self.case_insensitive)] = entry
        return index

    def _same_name(self, match: TreeEntry, entry: TreeEntry, replica_root: Path) -> bool:
        """True when ENTRY is the replica spelling of MATCH, not a differently encoded twin."""
        if match.rel == entry.rel:
            return True
        twin = replica_root / match.rel
        try:
            return os.path.samefile(twin, entry.path)
        except OSError:
            return False

    def _copy_attributes(self, entry: TreeEntry, dst: Path) -> None:
        try:
            shutil.copystat(entry.path, dst)
        except OSError as e:
            log_action(self.logger, "ATTR", f"could not copy attributes: {entry.rel} | {e}", path=entry.rel, level=logging.WARNING)

    def _emit(self, events: list[SyncEvent], kind: SyncKind, entry: TreeEntry) -> None:
        event = SyncEvent(kind=kind, rel_path=entry.rel, timestamp=dt.datetime.now(), is_dir=entry.is_dir)
        events.append(event)
        self.on_event(event)

    def stop_requested(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    @contextmanager
    def _entry(self, rel: str, failures: list[SynchronizationError]) -> Iterator[None]:
        try:
            yield
        except OSError as e:
            error = SynchronizationError.from_os_error(e, rel)
            if not self.keep_going:
                raise error from e
            error.__cause__ = e
            failures.append(error)
            log_action(self.logger, "SYNC", f"skipped {error}", path=rel, level=logging.ERROR)


# -------------------------
# Pass runner + scheduler
# -------------------------

def run_pass(
    reconciler: TreeReconciler,
    source_root: Path,
    replica_root: Path,
    logger: logging.Logger,
) -> PassResult:
    """One logged pass. Never raises for pass-level failures; returns them instead."""
    started = dt.datetime.now()
    log_action(logger, "SYNC", f"started {source_root} -> {replica_root}")

    try:
        events = reconciler.synchronize(source_root, replica_root)
    except SynchronizationError as e:
        kind = "transient error" if isinstance(e, TransientIOError) else "error"
        log_action(logger, "SYNC", f"aborted ({kind}) after {len(e.events)} event(s): {e}", level=logging.ERROR)
        return PassResult(events=tuple(e.events), error=e, started_at=started)

    cancelled = reconciler.stop_requested()
    if cancelled:
        log_action(logger, "SYNC", f"cancelled after {len(events)} event(s)", level=logging.WARNING)
    else:
        log_action(logger, "SYNC", f"completed ({len(events)} event(s))")
    return PassResult(events=tuple(events), cancelled=cancelled, started_at=started)


class SyncScheduler(threading.Thread):
    """
    The single worker: pass, wait INTERVAL_SEC, repeat until stop() is called.

    Passes never overlap. stop() only raises a flag checked between entries
    and phases, so a running copy always finishes. wake() (used by watch mode)
    cuts the current wait short.
    """

    def __init__(
        self,
        reconciler: TreeReconciler,
        source_root: Path,
        replica_root: Path,
        interval_sec: float,
        logger: logging.Logger,
        stop_event: threading.Event,
        settle_sec: float = WATCH_SETTLE_SEC,
    ):
        super().__init__(name="replica-sync")
        self.reconciler = reconciler
        self.source_root = source_root
        self.replica_root = replica_root
        self.interval_sec = float(interval_sec)
        self.settle_sec = settle_sec
        self.logger = logger
        self.stop_event = stop_event
        self._wake = threading.Event()
        self.passes = 0
        self.last_result: Optional[PassResult] = None

        reconciler.stop_event = stop_event

    def run(self) -> None:
        self.logger.info("SCHEDULER: started (interval=%.1fs)", self.interval_sec)
        while not self.stop_event.is_set():
            self._wake.clear()
            self.last_result = run_pass(self.reconciler, self.source_root, self.replica_root, self.logger)
            self.passes += 1

            woken = self._wake.wait(self.interval_sec)
            if woken and not self.stop_event.is_set():
                # let a burst of changes land before re-walking
                self.stop_event.wait(self.settle_sec)
        self.logger.info("SCHEDULER: stopped")

    def wake(self) -> None:
        self._wake.set()

    def stop(self) -> None:
        self.stop_event.set()
        self._wake.set()


# -------------------------
# Watchdog wake-ups
# -------------------------

class SourceChangeHandler(FileSystemEventHandler):
    """Wakes the scheduler on content-changing events in the source tree."""

    WAKE_EVENTS = {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}

    def __init__(self, source_root: Path, ignore: IgnoreMatcher, scheduler: SyncScheduler, logger: logging.Logger):
        self.source_root = source_root
        self.ignore = ignore
        self.scheduler = scheduler
        self.logger = logger

    def _relevant(self, raw_path, is_dir: bool) -> bool:
        if not raw_path:
            return False
        try:
            rel = tree_path(self.source_root, Path(os.fsdecode(raw_path)))
        except ValueError:
            return False
        if rel == ".":
            return False
        return not self.ignore.is_ignored(rel, is_dir=is_dir)

    def on_any_event(self, event) -> None:
        if event.event_type not in self.WAKE_EVENTS:
            return
        # a folder's own mtime bump follows every child change
        if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(self._relevant(p, bool(event.is_directory)) for p in paths):
            self.logger.debug("WATCH | %s %s", event.event_type, event.src_path)
            self.scheduler.wake()


# -------------------------
# Main
# -------------------------

def main(argv: Optional[list[str]] = None) -> int:
    try:
        cfg = parse_args(sys.argv[1:] if argv is None else argv)
    except ConfigurationError as e:
        print(f"Usage error: {e}")
        return 2

    try:
        logger = setup_logger(cfg.log_file.expanduser())
    except OSError as e:
        print(f"Config error: cannot open log file {cfg.log_file}: {e}")
        return 2

    try:
        cfg = validate_paths(cfg)
        logger.info("Source : %s", cfg.source_dir)
        logger.info("Replica: %s", cfg.replica_dir)
        logger.info("Log    : %s", cfg.log_file)
    except ConfigurationError as e:
        logger.error("Config error: %s", e)
        return 2

    ignore = build_ignore(cfg)
    stop_event = threading.Event()
    reconciler = TreeReconciler(
        comparator=make_comparator(cfg.compare),
        ignore=ignore,
        logger=logger,
        stop_event=stop_event,
        keep_going=cfg.keep_going,
    )

    if cfg.once:
        result = run_pass(reconciler, cfg.source_dir, cfg.replica_dir, logger)
        return 0 if result.ok else 1

    scheduler = SyncScheduler(
        reconciler=reconciler,
        source_root=cfg.source_dir,
        replica_root=cfg.replica_dir,
        interval_sec=cfg.interval_sec,
        logger=logger,
        stop_event=stop_event,
    )

    observer = None
    if cfg.watch:
        observer = Observer()
        observer.schedule(SourceChangeHandler(cfg.source_dir, ignore, scheduler, logger), str(cfg.source_dir), recursive=True)

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, lambda signum, frame: scheduler.stop())

    logger.info("Starting synchronization... (Ctrl+C to stop)")
    scheduler.start()
    if observer is not None:
        observer.start()

    try:
        while scheduler.is_alive():
            scheduler.join(timeout=0.5)
    except KeyboardInterrupt:
        logger.info("Stopping... (finishing current file)")
    finally:
        scheduler.stop()
        if observer is not None:
            observer.stop()
            observer.join(timeout=10)
        scheduler.join()
        logger.info("Stopped.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

#!/usr/bin/env python3
"""
Forora - Commit History Statistics (v1.0.0)

Streams an already-extracted sequence of commit records through a set of
independent stat collectors and builds a report model for the rendering layer:
- Summary totals (first committer, commit count, lines added/deleted)
- Commits, lines and files per day (sorted day series)
- Commit message size/line statistics
- Weekday x hour punch card
- Per-file-extension histogram (JSON export)

Forora never opens a repository: commit records are produced upstream and
handed over as a JSON array or JSON Lines file.

Version: 1.0.0
"""

import json
import os
import sys
import time
from collections import Counter, defaultdict, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence

import click
import psutil
import yaml
from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

colorama_init(autoreset=True)

# Version information
VERSION = "1.0.0"
SCHEMA_VERSION = "1.0.0"


# ============================================================================
# PROGRESS REPORTING
# ============================================================================


class ProgressReporter:
    """
    Console progress reporting for a pipeline run
    - Color-coded output (colorama)
    - Progress bars with ETA (tqdm)
    """

    def __init__(
        self, quiet: bool = False, verbose: bool = False, use_colors: bool = True
    ):
        self.quiet = quiet
        self.verbose = verbose
        self.use_colors = use_colors
        self.start_time = time.time()
        self.stage_times = {}

    def _colorize(self, text: str, color: str) -> str:
        """Apply color if enabled"""
        if self.use_colors:
            return f"{color}{text}{Style.RESET_ALL}"
        return text

    def stage_start(self, stage_name: str, message: str = ""):
        """Mark the start of a processing stage"""
        if self.quiet:
            return
        self.stage_times[stage_name] = time.time()

        separator = self._colorize("=" * 70, Fore.CYAN)
        stage_text = self._colorize(f"🔄 {stage_name}", Fore.BLUE + Style.BRIGHT)

        print(f"\n{separator}")
        print(stage_text)
        if message:
            print(f"   {message}")
        print(separator)

    def stage_complete(self, stage_name: str, stats: Dict = None):
        """Mark completion of a processing stage"""
        if self.quiet:
            return
        elapsed = time.time() - self.stage_times.get(stage_name, time.time())

        complete_text = self._colorize(
            f"✅ {stage_name} complete ({elapsed:.2f}s)", Fore.GREEN + Style.BRIGHT
        )
        print(complete_text)

        if stats and self.verbose:
            for key, value in stats.items():
                print(f"   {key}: {value}")

    def create_progress_bar(
        self, total: Optional[int], desc: str = "Processing"
    ) -> Optional[tqdm]:
        """Create a progress bar; total may be None for unsized commit streams"""
        if self.quiet:
            return None

        return tqdm(
            total=total,
            desc=self._colorize(desc, Fore.CYAN),
            unit=" commits",
            ncols=100,
        )

    def info(self, message: str):
        if not self.quiet:
            info_text = self._colorize("ℹ️  ", Fore.BLUE)
            print(f"{info_text}{message}")

    def warning(self, message: str):
        if not self.quiet:
            warning_text = self._colorize("⚠️  ", Fore.YELLOW + Style.BRIGHT)
            print(f"{warning_text}{message}")

    def error(self, message: str):
        """Display error message (always shown)"""
        error_text = self._colorize(f"❌ ERROR: {message}", Fore.RED + Style.BRIGHT)
        print(error_text, file=sys.stderr)

    def success(self, message: str):
        if not self.quiet:
            success_text = self._colorize(f"✨ {message}", Fore.GREEN + Style.BRIGHT)
            print(success_text)

    def summary(self, stats: Dict[str, Any]):
        """Display final summary"""
        if self.quiet:
            return
        elapsed = time.time() - self.start_time

        separator = self._colorize("=" * 70, Fore.CYAN)
        header = self._colorize("📊 COMMIT STATISTICS SUMMARY", Fore.MAGENTA + Style.BRIGHT)

        print(f"\n{separator}")
        print(header)
        print(separator)
        for key, value in stats.items():
            print(f"   {key}: {value}")

        time_text = self._colorize(f"⏱️  Total time: {elapsed:.2f}s", Fore.YELLOW)
        print(f"\n{time_text}")
        print(f"{separator}\n")


class MemoryMonitor:
    """Monitor memory usage and enforce limits"""

    def __init__(self, limit_mb: Optional[float] = None):
        self.limit_mb = limit_mb
        self.peak_mb = 0.0

    def check_memory(self) -> float:
        """Get current memory usage in MB"""
        process = psutil.Process(os.getpid())
        memory_mb = process.memory_info().rss / 1024 / 1024
        self.peak_mb = max(self.peak_mb, memory_mb)

        if self.limit_mb and memory_mb > self.limit_mb:
            raise MemoryError(
                f"Memory limit exceeded: {memory_mb:.1f}MB > {self.limit_mb}MB"
            )

        return memory_mb

    def get_peak(self) -> float:
        return self.peak_mb


# ============================================================================
# CONFIGURATION FILE SUPPORT
# ============================================================================

CONFIG_NAMES = [".forora.yaml", ".forora.yml", ".forora.json"]

PRESETS = {
    "standard": {},
    "minimal": {
        "skip_lines_by_day": True,
        "skip_files_by_day": True,
        "skip_messages": True,
        "skip_punchcard": True,
        "skip_extensions": True,
    },
    "full": {"similarity_window": 10},
}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.
    Supports .forora.yaml, .forora.yml, .forora.json
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()

    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in [".yaml", ".yml"]:
            return yaml.safe_load(f) or {}
        elif file_ext == ".json":
            return json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {file_ext}")


def find_config_file(search_dir: str) -> Optional[str]:
    """
    Auto-discover a configuration file next to the commits file, then in the
    current directory.
    """
    for directory in [search_dir, os.getcwd()]:
        for config_name in CONFIG_NAMES:
            config_path = os.path.join(directory, config_name)
            if os.path.exists(config_path):
                return config_path

    return None


class ConfigResolver:
    """
    Resolve configuration with precedence: CLI > Config File > Preset > Defaults
    """

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        preset_name: Optional[str],
        search_dir: str,
    ):
        self.cli = {k: v for k, v in cli_args.items() if v is not None}
        self.config = {}
        self.config_path = config_path

        if config_path:
            self.config = load_config_file(config_path)
        else:
            auto_path = find_config_file(search_dir)
            if auto_path:
                try:
                    self.config = load_config_file(auto_path)
                    self.config_path = auto_path
                except (OSError, ValueError, yaml.YAMLError) as e:
                    print(
                        f"Warning: Found config file but failed to load: {e}",
                        file=sys.stderr,
                    )

        # kebab-case -> snake_case
        self.config = {k.replace("-", "_"): v for k, v in self.config.items()}

        final_preset_name = preset_name or self.config.get("preset")
        self.preset = PRESETS.get(final_preset_name, {}) if final_preset_name else {}

    def get(self, key: str, default: Any = None) -> Any:
        """Resolve value based on precedence"""
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        if key in self.preset:
            return self.preset[key]
        return default


# ============================================================================
# COMMIT RECORDS
# ============================================================================


class OperationKind(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"

    @classmethod
    def parse(cls, value) -> "OperationKind":
        """Accept long names ('modified') or git status letters ('M', 'R087')."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        try:
            return cls(text.lower())
        except ValueError:
            pass
        kind = _STATUS_CODES.get(text[:1].upper())
        if kind is None:
            raise ValueError(f"Unknown file operation: {value!r}")
        return kind


_STATUS_CODES = {
    "A": OperationKind.ADDED,
    "M": OperationKind.MODIFIED,
    "D": OperationKind.DELETED,
    "R": OperationKind.RENAMED,
}


@dataclass(frozen=True)
class LineChange:
    lines_added: int = 0
    lines_deleted: int = 0


@dataclass(frozen=True)
class FileOperation:
    path: str
    extension: str
    operation: OperationKind

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileOperation":
        path = data["path"]
        extension = data.get("extension")
        if extension is None:
            extension = os.path.splitext(path)[1].lstrip(".")
        return cls(
            path=path,
            extension=extension,
            operation=OperationKind.parse(data["operation"]),
        )


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc)
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        raise ValueError(f"Commit timestamp has no timezone: {value!r}")
    return dt


@dataclass(frozen=True)
class CommitRecord:
    """
    One historical commit as delivered by the upstream extractor.

    Every derived value below is a pure function of the stored fields.
    """

    hash: str
    author: str
    timestamp: datetime
    message: str = ""
    line_changes: Sequence[LineChange] = ()
    file_operations: Sequence[FileOperation] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommitRecord":
        return cls(
            hash=data["hash"],
            author=data.get("author", ""),
            timestamp=_parse_timestamp(data["timestamp"]),
            message=data.get("message", ""),
            line_changes=tuple(
                LineChange(
                    lines_added=int(change.get("lines_added", 0)),
                    lines_deleted=int(change.get("lines_deleted", 0)),
                )
                for change in data.get("line_changes", [])
            ),
            file_operations=tuple(
                FileOperation.from_dict(op) for op in data.get("file_operations", [])
            ),
        )

    def total_lines_added(self) -> int:
        return sum(change.lines_added for change in self.line_changes)

    def total_lines_deleted(self) -> int:
        return sum(change.lines_deleted for change in self.line_changes)

    def _count_operations(self, kind: OperationKind) -> int:
        return sum(1 for op in self.file_operations if op.operation is kind)

    def total_files_added(self) -> int:
        return self._count_operations(OperationKind.ADDED)

    def total_files_modified(self) -> int:
        return self._count_operations(OperationKind.MODIFIED)

    def total_files_deleted(self) -> int:
        return self._count_operations(OperationKind.DELETED)

    def total_files_renamed(self) -> int:
        return self._count_operations(OperationKind.RENAMED)

    def total_message_size(self) -> int:
        """Message size in UTF-8 bytes"""
        return len(self.message.encode("utf-8"))

    def total_message_lines(self) -> int:
        return len(self.message.splitlines())

    def day_key(self) -> str:
        """Calendar day in the commit's own timezone, e.g. '2024-04-12'"""
        return self.timestamp.strftime("%Y-%m-%d")

    def weekday(self) -> int:
        """0=Sunday, 6=Saturday"""
        return (self.timestamp.weekday() + 1) % 7

    def hour(self) -> int:
        return self.timestamp.hour

    def hour_key_by_weekday(self) -> str:
        return f"{self.weekday()}-{self.hour()}"


def load_commits(commits_path: str) -> List[CommitRecord]:
    """
    Load commit records from a JSON array or JSON Lines file.
    Records are kept in file order; that order defines "first commit".
    """
    with open(commits_path, "r", encoding="utf-8") as f:
        text = f.read()

    stripped = text.lstrip()
    if not stripped:
        return []

    commits = []
    if stripped.startswith("["):
        try:
            raw_records = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ValueError(f"{commits_path}: invalid JSON: {e}") from e
        for index, record in enumerate(raw_records):
            try:
                commits.append(CommitRecord.from_dict(record))
            except (KeyError, TypeError, AttributeError) as e:
                raise ValueError(
                    f"{commits_path}: record {index}: invalid commit record: {e!r}"
                ) from e
        return commits

    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            commits.append(CommitRecord.from_dict(json.loads(line)))
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            raise ValueError(
                f"{commits_path}:{line_no}: invalid commit record: {e!r}"
            ) from e
    return commits


# ============================================================================
# REPORT MODEL
# ============================================================================


@dataclass
class SummaryRow:
    name: str
    value: str


@dataclass
class CommitsByDayRow:
    key: str
    value: int


@dataclass
class LinesByDayRow:
    key: str
    lines_added: int
    lines_deleted: int


@dataclass
class FilesByDayRow:
    key: str
    files_added: int
    files_modified: int
    files_deleted: int
    files_renamed: int


@dataclass
class PunchRow:
    weekday: int
    hour: int
    commits: int


@dataclass
class JsonReportItem:
    key: str
    summary: List[SummaryRow] = field(default_factory=list)
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "summary": [asdict(row) for row in self.summary],
            "data": self.data,
        }


@dataclass
class GitStatsReport:
    """
    Shared target of every collector's finalize step.

    Empty until the finalize phase; read-only once handed to a renderer.
    """

    summary: List[SummaryRow] = field(default_factory=list)
    total_commits_by_day: List[CommitsByDayRow] = field(default_factory=list)
    total_lines_by_day: List[LinesByDayRow] = field(default_factory=list)
    total_files_by_day: List[FilesByDayRow] = field(default_factory=list)
    punch_data: List[PunchRow] = field(default_factory=list)
    json_items: List[JsonReportItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Textual report payload; JSON items go through export_json instead"""
        return {
            "summary": [asdict(row) for row in self.summary],
            "total_commits_by_day": [asdict(row) for row in self.total_commits_by_day],
            "total_lines_by_day": [asdict(row) for row in self.total_lines_by_day],
            "total_files_by_day": [asdict(row) for row in self.total_files_by_day],
            "punch_data": [asdict(row) for row in self.punch_data],
        }


def format_bytes(size: int) -> str:
    """Human readable byte size in decimal units: '999 B', '1.5 KB', '2.0 MB'"""
    if size < 1000:
        return f"{size} B"
    value = float(size)
    for unit in "KMGTPE":
        value /= 1000
        if value < 1000 or unit == "E":
            break
    return f"{value:.1f} {unit}B"


# ============================================================================
# STAT COLLECTORS
# ============================================================================


class StatCollector:
    """
    Base class for stat collectors.

    process_commit() sees every commit exactly once, in the order the
    pipeline was given; finalize() runs once afterwards and appends this
    collector's slice to the report. Collector state is private to the
    collector and never shared.
    """

    name = "base"

    def process_commit(self, commit: CommitRecord):
        """Process a single commit - override in subclasses"""
        pass

    def finalize(self, report: GitStatsReport):
        """Contribute results to the report - override in subclasses"""
        pass


class SummaryStatsCollector(StatCollector):
    """
    Commit count, first commit/committer and total line deltas.

    "First" means first in the supplied sequence, not earliest by date:
    a newest-first stream reports its newest commit here.
    """

    name = "summary"

    def __init__(self):
        self.commit_count = 0
        self.date_first_commit = ""
        self.first_committer = ""
        self.total_lines_added = 0
        self.total_lines_deleted = 0

    def process_commit(self, commit: CommitRecord):
        self.commit_count += 1

        if not self.date_first_commit:
            self.date_first_commit = str(commit.timestamp)

        if not self.first_committer:
            self.first_committer = commit.author

        self.total_lines_added += commit.total_lines_added()
        self.total_lines_deleted += commit.total_lines_deleted()

    def finalize(self, report: GitStatsReport):
        report.summary.extend(
            [
                SummaryRow("First committer", self.first_committer),
                SummaryRow("Date of first commit", self.date_first_commit),
                SummaryRow("Number of commits", str(self.commit_count)),
                SummaryRow("Total lines added", str(self.total_lines_added)),
                SummaryRow("Total lines deleted", str(self.total_lines_deleted)),
            ]
        )


class TotalCommitsByDayCollector(StatCollector):
    name = "commits_by_day"

    def __init__(self):
        self.total_commits_by_day = defaultdict(int)

    def process_commit(self, commit: CommitRecord):
        self.total_commits_by_day[commit.day_key()] += 1

    def finalize(self, report: GitStatsReport):
        for day, count in self.total_commits_by_day.items():
            report.total_commits_by_day.append(CommitsByDayRow(key=day, value=count))
        report.total_commits_by_day.sort(key=lambda row: row.key)


@dataclass
class LineStats:
    added: int = 0
    deleted: int = 0


@dataclass
class FileStats:
    added: int = 0
    modified: int = 0
    deleted: int = 0
    renamed: int = 0


class TotalLinesByDayCollector(StatCollector):
    name = "lines_by_day"

    def __init__(self):
        self.total_lines_by_day = defaultdict(LineStats)

    def process_commit(self, commit: CommitRecord):
        stat = self.total_lines_by_day[commit.day_key()]
        stat.added += commit.total_lines_added()
        stat.deleted += commit.total_lines_deleted()

    def finalize(self, report: GitStatsReport):
        for day, stat in self.total_lines_by_day.items():
            report.total_lines_by_day.append(
                LinesByDayRow(
                    key=day, lines_added=stat.added, lines_deleted=stat.deleted
                )
            )
        report.total_lines_by_day.sort(key=lambda row: row.key)


class TotalFilesByDayCollector(StatCollector):
    name = "files_by_day"

    def __init__(self):
        self.total_files_by_day = defaultdict(FileStats)

    def process_commit(self, commit: CommitRecord):
        stat = self.total_files_by_day[commit.day_key()]
        stat.added += commit.total_files_added()
        stat.modified += commit.total_files_modified()
        stat.deleted += commit.total_files_deleted()
        stat.renamed += commit.total_files_renamed()

    def finalize(self, report: GitStatsReport):
        for day, stat in self.total_files_by_day.items():
            report.total_files_by_day.append(
                FilesByDayRow(
                    key=day,
                    files_added=stat.added,
                    files_modified=stat.modified,
                    files_deleted=stat.deleted,
                    files_renamed=stat.renamed,
                )
            )
        report.total_files_by_day.sort(key=lambda row: row.key)


@dataclass
class MessageStats:
    max_size: int = 0
    max_lines: int = 0
    min_size: int = 0
    min_lines: int = 0
    avg_size: int = 0
    avg_lines: int = 0


class MessageStatsCollector(StatCollector):
    """
    Commit message size and line-count statistics.

    Averages are recomputed exactly (integer division) after every commit.
    The minimums start at 0 and are only replaced by values <= the current
    minimum, so well-formed messages leave them at 0.
    """

    name = "messages"

    def __init__(self):
        self.count = 0
        self.total_message_lines = 0
        self.total_message_size = 0
        self.message_stats = MessageStats()

    def process_commit(self, commit: CommitRecord):
        size = commit.total_message_size()
        lines = commit.total_message_lines()
        stats = self.message_stats

        self.count += 1
        self.total_message_lines += lines
        self.total_message_size += size

        if size > stats.max_size:
            stats.max_size = size
        if lines > stats.max_lines:
            stats.max_lines = lines

        if size <= stats.min_size:
            stats.min_size = size
        if lines <= stats.min_lines:
            stats.min_lines = lines

        stats.avg_size = self.total_message_size // self.count
        stats.avg_lines = self.total_message_lines // self.count

    def finalize(self, report: GitStatsReport):
        stats = self.message_stats
        report.summary.extend(
            [
                SummaryRow(
                    "Total size of all commit messages",
                    format_bytes(self.total_message_size),
                ),
                SummaryRow(
                    "Total number of lines across all commit messages",
                    str(self.total_message_lines),
                ),
                SummaryRow(
                    "Max number of lines in a commit message", str(stats.max_lines)
                ),
                SummaryRow("Max size of a commit message", format_bytes(stats.max_size)),
                SummaryRow(
                    "Avg number of lines in a commit message", str(stats.avg_lines)
                ),
                SummaryRow("Avg size of a commit message", format_bytes(stats.avg_size)),
            ]
        )


@dataclass
class PunchStats:
    weekday: int
    hour: int
    commits: int = 0


class PunchCardCollector(StatCollector):
    """Weekday x hour commit matrix. Only populated cells are emitted, unsorted."""

    name = "punchcard"

    def __init__(self):
        self.punchcard = {}

    def process_commit(self, commit: CommitRecord):
        key = commit.hour_key_by_weekday()
        stat = self.punchcard.get(key)
        if stat is None:
            stat = self.punchcard[key] = PunchStats(
                weekday=commit.weekday(), hour=commit.hour()
            )
        stat.commits += 1

    def finalize(self, report: GitStatsReport):
        for stat in self.punchcard.values():
            report.punch_data.append(
                PunchRow(weekday=stat.weekday, hour=stat.hour, commits=stat.commits)
            )


class CommitsByFileExtension(StatCollector):
    """
    Touch count per file extension, exported as a JSON item.
    Every file operation counts, so two .py files in one commit add 2.
    """

    name = "extensions"
    json_key = "files_by_extension"

    def __init__(self):
        self.data = Counter()

    def process_commit(self, commit: CommitRecord):
        for operation in commit.file_operations:
            self.data[operation.extension] += 1

    def get_json_item(self) -> JsonReportItem:
        return JsonReportItem(
            key=self.json_key,
            summary=[],
            data=[{"name": ext, "value": count} for ext, count in self.data.items()],
        )

    def finalize(self, report: GitStatsReport):
        report.json_items.append(self.get_json_item())


class WindowedChangeDetector:
    """Keeps the changed-file sets of the last `window_size` commits."""

    def __init__(self, window_size: int = 10):
        if window_size < 1:
            raise ValueError(f"window_size must be at least 1, got {window_size}")
        self.window_size = window_size
        self._window = deque(maxlen=window_size)

    def add(self, paths: Iterable[str]):
        self._window.append(frozenset(paths))

    def window(self) -> List[FrozenSet[str]]:
        """Retained file sets, oldest first"""
        return list(self._window)


class SimilarFilesChangingCollector(StatCollector):
    name = "similar_files"

    def __init__(self, window_size: int = 10):
        self.detector = WindowedChangeDetector(window_size)

    def process_commit(self, commit: CommitRecord):
        self.detector.add(op.path for op in commit.file_operations)

    def finalize(self, report: GitStatsReport):
        # TODO: report file sets that recur together inside the window
        pass


def create_stat_collectors(
    skip_summary: bool = False,
    skip_commits_by_day: bool = False,
    skip_lines_by_day: bool = False,
    skip_messages: bool = False,
    skip_files_by_day: bool = False,
    skip_punchcard: bool = False,
    skip_extensions: bool = False,
    similarity_window: Optional[int] = None,
) -> List[StatCollector]:
    """Build the collector set in its fixed registration order"""
    collectors = []
    if not skip_summary:
        collectors.append(SummaryStatsCollector())
    if not skip_commits_by_day:
        collectors.append(TotalCommitsByDayCollector())
    if not skip_lines_by_day:
        collectors.append(TotalLinesByDayCollector())
    if not skip_messages:
        collectors.append(MessageStatsCollector())
    if not skip_files_by_day:
        collectors.append(TotalFilesByDayCollector())
    if not skip_punchcard:
        collectors.append(PunchCardCollector())
    if not skip_extensions:
        collectors.append(CommitsByFileExtension())
    if similarity_window:
        collectors.append(SimilarFilesChangingCollector(similarity_window))
    return collectors


# ============================================================================
# PIPELINE
# ============================================================================


@dataclass
class PerformanceMetrics:
    commits_processed: int = 0
    collector_times: Dict[str, float] = field(default_factory=dict)
    memory_peak_mb: float = 0.0
    total_time: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "commits_processed": self.commits_processed,
            "collector_times": self.collector_times,
            "memory_peak_mb": round(self.memory_peak_mb, 2),
            "total_time_seconds": round(self.total_time, 2),
        }


class StatsPipeline:
    """
    Single-pass driver: every commit goes to every collector in registration
    order, then every collector finalizes into a fresh report.
    """

    def __init__(
        self,
        reporter: Optional[ProgressReporter] = None,
        memory_limit_mb: Optional[float] = None,
    ):
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.collectors: List[StatCollector] = []
        self.errors: List[str] = []
        self.metrics = PerformanceMetrics()
        self.memory_monitor = MemoryMonitor(limit_mb=memory_limit_mb)

    def add_collector(self, collector: StatCollector):
        """Register a collector; registration order is finalize order"""
        self.collectors.append(collector)

    def _process_commit(self, commit: CommitRecord):
        for collector in self.collectors:
            try:
                collector.process_commit(commit)
            except Exception as e:
                self.errors.append(
                    f"Collector {type(collector).__name__} failed on {commit.hash}: {e}"
                )

    def run(self, commits: Iterable[CommitRecord]) -> GitStatsReport:
        start_time = time.time()
        total = len(commits) if hasattr(commits, "__len__") else None

        self.reporter.stage_start(
            "Commit Processing",
            f"Streaming commits through {len(self.collectors)} collectors...",
        )
        progress_bar = self.reporter.create_progress_bar(
            total=total, desc="Processing commits"
        )

        commits_processed = 0
        try:
            for commit in commits:
                self._process_commit(commit)
                commits_processed += 1

                if progress_bar:
                    progress_bar.update(1)

                if commits_processed % 5000 == 0:
                    memory_mb = self.memory_monitor.check_memory()
                    if self.reporter.verbose:
                        self.reporter.info(f"Memory usage: {memory_mb:.1f} MB")
        finally:
            if progress_bar:
                progress_bar.close()

        self.metrics.commits_processed = commits_processed
        self.reporter.stage_complete(
            "Commit Processing", {"Commits processed": f"{commits_processed:,}"}
        )

        self.reporter.stage_start("Finalize", "Building report...")
        report = GitStatsReport()
        for collector in self.collectors:
            collector_start = time.time()
            collector.finalize(report)
            self.metrics.collector_times[collector.name] = round(
                time.time() - collector_start, 4
            )
        self.reporter.stage_complete(
            "Finalize",
            {name: f"{t:.4f}s" for name, t in self.metrics.collector_times.items()},
        )

        self.metrics.memory_peak_mb = self.memory_monitor.get_peak()
        self.metrics.total_time = time.time() - start_time
        return report


# ============================================================================
# EXPORT
# ============================================================================


class ExportError(Exception):
    """JSON export of report items failed; the report itself is still intact"""


def export_json(report: GitStatsReport, indent: Optional[int] = 2) -> str:
    """Serialize the report's JSON items as a JSON array of UTF-8 encodable text"""
    try:
        payload = json.dumps(
            [item.to_dict() for item in report.json_items],
            indent=indent,
            ensure_ascii=False,
        )
        # Lone surrogates survive dumps but not the UTF-8 file write
        payload.encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ExportError(f"Failed to serialize JSON export: {e}") from e
    return payload


def write_report(
    report: GitStatsReport,
    output_dir: str,
    metrics: Optional[PerformanceMetrics] = None,
) -> str:
    """Write report.json for the rendering layer"""
    data = {
        "generator_version": VERSION,
        "schema_version": SCHEMA_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        **report.to_dict(),
    }
    if metrics is not None:
        data["performance_metrics"] = metrics.to_dict()

    # Encode up front so a bad string never leaves a truncated file behind
    encoded = json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")

    os.makedirs(output_dir, exist_ok=True)
    output_path = os.path.join(output_dir, "report.json")
    with open(output_path, "wb") as f:
        f.write(encoded)
    return output_path


def write_json_export(report: GitStatsReport, output_dir: str) -> str:
    """Write json_export.json; raises ExportError before touching the file"""
    payload = export_json(report)

    os.makedirs(output_dir, exist_ok=True)
    output_path = os.path.join(output_dir, "json_export.json")
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(payload)
    return output_path


# ============================================================================
# CLI INTERFACE
# ============================================================================

SKIP_OPTIONS = [
    "skip_summary",
    "skip_commits_by_day",
    "skip_lines_by_day",
    "skip_messages",
    "skip_files_by_day",
    "skip_punchcard",
    "skip_extensions",
]


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.argument(
    "commits_file",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    required=False,
)
@click.option(
    "-o",
    "--output",
    type=click.Path(file_okay=False),
    help="Output directory (default: forora_report_TIMESTAMP)",
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS)),
    help="Use predefined collector configuration",
)
# Collector selection
@click.option("--skip-summary", is_flag=True, default=None)
@click.option("--skip-commits-by-day", is_flag=True, default=None)
@click.option("--skip-lines-by-day", is_flag=True, default=None)
@click.option("--skip-messages", is_flag=True, default=None)
@click.option("--skip-files-by-day", is_flag=True, default=None)
@click.option("--skip-punchcard", is_flag=True, default=None)
@click.option("--skip-extensions", is_flag=True, default=None)
@click.option(
    "--similarity-window",
    type=click.IntRange(min=1),
    help="Track files changing together over the last N commits",
)
# Performance
@click.option("--memory-limit", type=float, help="Memory limit in MB")
# Output Control
@click.option(
    "-q", "--quiet", is_flag=True, default=None, help="Suppress progress output"
)
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    default=None,
    help="Show detailed progress information",
)
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Show which collectors would run without processing commits",
)
@click.version_option(version=VERSION)
def main(commits_file, output, config, preset, **kwargs):
    """
    Forora - commit history statistics.

    COMMITS_FILE is a JSON array or JSON Lines file of commit records
    produced by a history extractor.
    """
    if not commits_file:
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit(2)

    try:
        resolver = ConfigResolver(kwargs, config, preset, os.path.dirname(commits_file))
    except (OSError, ValueError, yaml.YAMLError) as e:
        ProgressReporter().error(f"Invalid configuration: {e}")
        sys.exit(1)

    quiet = resolver.get("quiet", False)
    verbose = resolver.get("verbose", False)
    no_color = resolver.get("no_color", False)
    dry_run = resolver.get("dry_run", False)

    reporter = ProgressReporter(quiet=quiet, verbose=verbose, use_colors=not no_color)
    if resolver.config_path:
        reporter.info(f"Configuration: {resolver.config_path}")

    try:
        collectors = create_stat_collectors(
            similarity_window=resolver.get("similarity_window"),
            **{option: resolver.get(option, False) for option in SKIP_OPTIONS},
        )
    except (TypeError, ValueError) as e:
        reporter.error(f"Invalid configuration: {e}")
        sys.exit(1)

    if dry_run:
        reporter.info("DRY RUN MODE - No commits will be processed")
        reporter.info(f"Commits file: {commits_file}")
        reporter.info("\nCollectors to run:")
        for collector in collectors:
            reporter.info(f"  ✓ {collector.name}")
        return

    if output:
        output_dir = output
    else:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_dir = f"forora_report_{timestamp}"

    try:
        reporter.stage_start("Loading", f"Reading commit records: {commits_file}")
        commits = load_commits(commits_file)
        reporter.stage_complete("Loading", {"Commits": f"{len(commits):,}"})

        pipeline = StatsPipeline(reporter, memory_limit_mb=resolver.get("memory_limit"))
        for collector in collectors:
            pipeline.add_collector(collector)
        report = pipeline.run(commits)

        reporter.stage_start("Export", f"Writing report to {output_dir}")
        outputs = {"report": write_report(report, output_dir, pipeline.metrics)}
        try:
            outputs["json_export"] = write_json_export(report, output_dir)
        except ExportError as e:
            reporter.warning(f"JSON export skipped: {e}")
        reporter.stage_complete("Export", outputs)

        if pipeline.errors:
            with open(
                os.path.join(output_dir, "collector_errors.txt"), "w", encoding="utf-8"
            ) as f:
                f.write("\n".join(pipeline.errors))
            reporter.warning(
                f"{len(pipeline.errors)} collector errors logged to collector_errors.txt"
            )

        reporter.summary(
            {
                "Commits file": commits_file,
                "Output directory": output_dir,
                "Total commits": f"{pipeline.metrics.commits_processed:,}",
                "Collectors": ", ".join(c.name for c in collectors),
                "Days with commits": len(report.total_commits_by_day),
            }
        )
        reporter.success(f"Report complete! Results saved to: {output_dir}")

    except Exception as e:
        reporter.error(f"Report failed: {str(e)}")
        if verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()

import json
import pytest
from datetime import datetime, timezone

from forora import (
    ProgressReporter, CommitRecord, LineChange, FileOperation, OperationKind,
)

@pytest.fixture
def quiet_reporter():
    return ProgressReporter(quiet=True)

@pytest.fixture
def make_commit():
    """Factory for commit records with sensible defaults."""
    counter = {"n": 0}

    def _make(author="Tester", timestamp="2024-03-05T10:15:00+00:00", message="msg",
              lines=(), files=(), commit_hash=None):
        counter["n"] += 1
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return CommitRecord(
            hash=commit_hash or f"c{counter['n']:04d}",
            author=author,
            timestamp=timestamp,
            message=message,
            line_changes=tuple(LineChange(a, d) for a, d in lines),
            file_operations=tuple(
                FileOperation.from_dict({"path": path, "operation": op})
                for path, op in files
            ),
        )

    return _make

@pytest.fixture
def sample_commits():
    """Three commits, one per day, supplied oldest-first."""
    return [
        CommitRecord(
            hash="aaa111",
            author="Alice",
            timestamp=datetime(2024, 3, 5, 10, 15, tzinfo=timezone.utc),   # Tuesday
            message="Initial commit",
            line_changes=(LineChange(10, 0),),
            file_operations=(FileOperation("a.rs", "rs", OperationKind.ADDED),),
        ),
        CommitRecord(
            hash="bbb222",
            author="Bob",
            timestamp=datetime(2024, 3, 6, 14, 30, tzinfo=timezone.utc),   # Wednesday
            message="Add b.rs\n\nLonger body",
            line_changes=(LineChange(3, 2), LineChange(2, 0)),
            file_operations=(
                FileOperation("a.rs", "rs", OperationKind.MODIFIED),
                FileOperation("b.rs", "rs", OperationKind.ADDED),
            ),
        ),
        CommitRecord(
            hash="ccc333",
            author="Carl",
            timestamp=datetime(2024, 3, 7, 9, 0, tzinfo=timezone.utc),     # Thursday
            message="Remove b.rs",
            line_changes=(LineChange(0, 3),),
            file_operations=(FileOperation("b.rs", "rs", OperationKind.DELETED),),
        ),
    ]

@pytest.fixture
def commits_file(tmp_path):
    """The sample history as the extractor would hand it over (JSON Lines)."""
    records = [
        {
            "hash": "aaa111",
            "author": "Alice",
            "timestamp": "2024-03-05T10:15:00+00:00",
            "message": "Initial commit",
            "line_changes": [{"lines_added": 10, "lines_deleted": 0}],
            "file_operations": [{"path": "a.rs", "operation": "A"}],
        },
        {
            "hash": "bbb222",
            "author": "Bob",
            "timestamp": "2024-03-06T14:30:00+00:00",
            "message": "Add b.rs\n\nLonger body",
            "line_changes": [
                {"lines_added": 3, "lines_deleted": 2},
                {"lines_added": 2, "lines_deleted": 0},
            ],
            "file_operations": [
                {"path": "a.rs", "operation": "modified"},
                {"path": "b.rs", "extension": "rs", "operation": "added"},
            ],
        },
        {
            "hash": "ccc333",
            "author": "Carl",
            "timestamp": "2024-03-07T09:00:00Z",
            "message": "Remove b.rs",
            "line_changes": [{"lines_added": 0, "lines_deleted": 3}],
            "file_operations": [{"path": "b.rs", "operation": "D"}],
        },
    ]
    path = tmp_path / "commits.jsonl"
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n", encoding="utf-8")
    return path

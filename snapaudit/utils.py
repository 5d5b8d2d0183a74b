"""
Utility functions for the EBS snapshot audit.

Logging Level Standards:
------------------------
- ERROR: Failures that abort the run
         "Snapshot audit failed: {e}"
- WARNING: Truncated results and throttling hints
           "Stopped after 25 pages; more snapshots exist"
- INFO: Progress messages, resource counts
        "Filtered snapshots page 3: 500 -> 212"
        "Found 42 AMIs owned by 123456789012"
- DEBUG: Per-item detail
         "Mapping snap-0abc to ami-0def"
"""
import csv
import io
import json
import logging
import os
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .constants import DATE_FORMAT, LIST_SEPARATOR, RATE_LIMIT_ERROR_CODES

if TYPE_CHECKING:
    from rich.progress import TaskID


# =============================================================================
# Errors
# =============================================================================

class SnapshotAuditError(Exception):
    """Base class for snapshot audit failures."""


class ConfigurationError(SnapshotAuditError):
    """Raised when required run inputs are missing or invalid."""


class DateParseError(SnapshotAuditError):
    """Raised when the cutoff date is not in YYYY-MM-DD form."""


class ProviderError(SnapshotAuditError):
    """Custom exception for failed AWS describe/list/attribute calls.

    Wraps the botocore exception so the run can abort with the
    provider-supplied message while keeping the error code around for
    throttling detection.
    """
    def __init__(
        self,
        message: str,
        operation: str = "",
        code: str = "",
        original_error: Optional[Exception] = None
    ):
        self.operation = operation
        self.code = code
        self.original_error = original_error
        super().__init__(message)


def get_error_code(exc: Exception) -> str:
    """Return the AWS error code carried by an exception, or ''."""
    if isinstance(exc, ProviderError):
        return exc.code
    if isinstance(exc, ClientError):
        return exc.response.get('Error', {}).get('Code', '')
    return ''


def is_rate_limited(exc: Exception) -> bool:
    """Check if an exception represents API throttling."""
    return get_error_code(exc) in RATE_LIMIT_ERROR_CODES


@contextmanager
def provider_errors(operation: str) -> Iterator[None]:
    """
    Translate botocore failures raised inside the block into ProviderError.

    Usable around plain calls as well as inside paginating generators.

    Args:
        operation: Name of the AWS operation, used in the error message
    """
    try:
        yield
    except ClientError as e:
        error = e.response.get('Error', {})
        code = error.get('Code', '')
        message = error.get('Message') or str(e)
        raise ProviderError(
            f"{operation} failed ({code}): {message}",
            operation=operation,
            code=code,
            original_error=e
        ) from e
    except BotoCoreError as e:
        raise ProviderError(
            f"{operation} failed: {e}",
            operation=operation,
            original_error=e
        ) from e


# =============================================================================
# Collections
# =============================================================================

def dedupe(values: Iterable[str]) -> List[str]:
    """Remove duplicates while preserving first-occurrence order."""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def make_batches(values: Sequence[str], batch_size: int) -> List[List[str]]:
    """
    Split values into consecutive batches of at most batch_size.

    The final batch holds the remainder when len(values) is not a multiple
    of batch_size. Concatenating the batches gives back the input.

    Example:
        make_batches(['a', 'b', 'c'], 2) -> [['a', 'b'], ['c']]
    """
    if batch_size < 1:
        raise ConfigurationError(f"batch size must be at least 1, got {batch_size}")
    return [list(values[i:i + batch_size]) for i in range(0, len(values), batch_size)]


# =============================================================================
# Formatting
# =============================================================================

def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def parse_date(value: str) -> datetime:
    """Parse a YYYY-MM-DD string into a UTC datetime at midnight."""
    try:
        parsed = datetime.strptime(value, DATE_FORMAT)
    except (TypeError, ValueError) as e:
        raise DateParseError(f"Invalid date filter {value!r}, expected YYYY-MM-DD") from e
    return parsed.replace(tzinfo=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_date(value: Optional[datetime]) -> str:
    """Format a datetime as YYYY-MM-DD ('' when missing)."""
    if value is None:
        return ''
    return value.strftime(DATE_FORMAT)


def format_bool(value: bool) -> str:
    """Render a boolean the way the CSV exports expect."""
    return 'true' if value else 'false'


def join_values(values: Iterable[str]) -> str:
    """Deduplicate and |-join a multi-valued cell."""
    return LIST_SEPARATOR.join(dedupe(values))


def tags_to_dict(tags: Any) -> Dict[str, str]:
    """
    Convert an AWS tag list to a dictionary.

    Supports:
    - AWS format: [{"Key": "Name", "Value": "backup"}]
    - Already a dict
    """
    if not tags:
        return {}

    if isinstance(tags, dict):
        return tags

    if isinstance(tags, list):
        return {tag.get("Key", ""): tag.get("Value", "") for tag in tags if tag.get("Key")}

    return {}


def format_tags(tags: Any) -> str:
    """Render tags as key=value pairs joined with |."""
    return LIST_SEPARATOR.join(f"{k}={v}" for k, v in tags_to_dict(tags).items())


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for snapshot intake with rich display.

    Falls back to simple print statements if stdout is not a TTY
    (e.g., when piping output).

    Usage:
        with ProgressTracker("EBS Snapshots", total_pages=25) as tracker:
            for page in pages:
                tracker.add_page(len(page), len(filtered))
    """

    def __init__(self, provider: str, total_pages: int = 0, show_progress: bool = True):
        self.provider = provider
        self.total_pages = total_pages
        self.show_progress = show_progress and sys.stdout.isatty()

        # Counters
        self.completed_pages = 0
        self.total_snapshots = 0
        self.in_scope_snapshots = 0

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional["TaskID"] = None
        self._use_rich = self.show_progress

    def __enter__(self):
        if self._use_rich:
            self._console = Console()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task(
                f"{self.provider} pages", total=self.total_pages or None
            )
            self._progress.start()
        else:
            print(f"\n{'='*60}")
            print(f"{self.provider} Audit Starting")
            print(f"{'='*60}")
            if self.total_pages:
                print(f"Page cap: {self.total_pages}")
            print()

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._use_rich:
            assert self._progress is not None
            self._progress.stop()
        self._print_summary()
        return False

    def add_page(self, page_size: int, in_scope: int):
        """Record one snapshot page and how many of its snapshots passed the date filter."""
        self.completed_pages += 1
        self.total_snapshots += page_size
        self.in_scope_snapshots += in_scope
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, advance=1)
        else:
            print(f"  [page {self.completed_pages}] {page_size} snapshots, {in_scope} before cutoff")

    def _print_summary(self):
        """Print a plain text summary."""
        lines = [
            f"  Pages read:         {self.completed_pages}",
            f"  Snapshots analyzed: {self.total_snapshots:,}",
            f"  Before cutoff:      {self.in_scope_snapshots:,}",
        ]
        if self._use_rich:
            assert self._console is not None
            self._console.print(f"[bold]{self.provider} Intake Complete[/bold]")
            for line in lines:
                self._console.print(line)
            return
        print(f"\n{'='*60}")
        print(f"{self.provider} Intake Complete")
        print(f"{'='*60}")
        for line in lines:
            print(line)
        print()


# =============================================================================
# Logging
# =============================================================================

def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance for the snapaudit package
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(threadName)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    # Console handler (stderr)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"snapaudit_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    return logging.getLogger('snapaudit')


# =============================================================================
# Output Writers
# =============================================================================

def write_json(data: Any, filepath: str) -> None:
    """Write data to JSON file with secure permissions."""
    if filepath.startswith("s3://"):
        write_to_s3(data, filepath)
        return

    # Local file - owner read/write only, the plan lists account resources
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        f = os.fdopen(fd, 'w')
    except Exception:
        os.close(fd)
        raise
    # The file object owns fd from here on
    with f:
        json.dump(data, f, indent=2, default=str)
    print(f"Wrote {filepath}")


def write_csv(rows: List[List[str]], filepath: str, header: List[str]) -> None:
    """Write a header and rows to a CSV file."""
    if filepath.startswith("s3://"):
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(header)
        writer.writerows(rows)
        write_to_s3(output.getvalue(), filepath, content_type="text/csv")
        return

    with open(filepath, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)
    print(f"Wrote {filepath}")


def write_text(lines: List[str], filepath: str) -> None:
    """Write lines to a text file, one per line."""
    body = "".join(f"{line}\n" for line in lines)
    if filepath.startswith("s3://"):
        write_to_s3(body, filepath, content_type="text/plain")
        return

    with open(filepath, 'w') as f:
        f.write(body)
    print(f"Wrote {filepath}")


def write_to_s3(data: Any, s3_path: str, content_type: str = "application/json") -> None:
    """Write data to S3 bucket."""
    import boto3

    # Parse S3 path: s3://bucket/key
    parts = s3_path.replace("s3://", "").split("/", 1)
    bucket = parts[0]
    key = parts[1] if len(parts) > 1 else "output.json"

    if isinstance(data, str):
        body = data
    else:
        body = json.dumps(data, indent=2, default=str)

    try:
        s3 = boto3.client('s3')
        s3.put_object(
            Bucket=bucket,
            Key=key,
            Body=body,
            ContentType=content_type
        )
        print(f"Wrote s3://{bucket}/{key}")
    except Exception as e:
        print(f"ERROR: Failed to write to S3 ({s3_path}): {e}")
        raise


def join_output_path(base: str, filename: str) -> str:
    """Join an output directory (local or s3://) with a filename."""
    if base.startswith("s3://"):
        return f"{base.rstrip('/')}/{filename}"
    return os.path.join(base, filename)


def print_summary_table(rows: List[List[str]], headers: Sequence[str] = ("Resource", "Count")) -> None:
    """Print a summary table to console."""
    if not rows:
        print("Nothing to report.")
        return

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)

    print("\n" + header_line)
    print(separator)
    for row in rows:
        print(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))
    print()

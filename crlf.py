#!/usr/bin/env python3
"""
crlf

Check and change the line endings of text files.
"""

import argparse
import concurrent.futures
import glob
import io
import logging
import os
import shutil
import subprocess
import sys
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from line_endings import LineEnding, LineStatistics, convert_to, measure

# Define version
__version__ = "1.0.0"


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Set up logging with thread-safe handler; a log file is only added by --log-file
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger("crlf")
# Add a thread lock for logging
log_lock = threading.Lock()

DEFAULT_PATTERN = "**/*"
DEFAULT_IGNORE_DIRS: List[str] = [
    ".git",
    ".github",
    "__pycache__",
    "node_modules",
    "venv",
    ".venv",
]

ACTION_ENDINGS: Dict[str, LineEnding] = {
    "set-crlf": LineEnding.CRLF,
    "set-lf": LineEnding.LF,
}

# ANSI colors used when stdout is a terminal
CRLF_COLOR = "\033[33m"
LF_COLOR = "\033[32m"
MIXED_COLOR = "\033[31m"
RESET = "\033[0m"

KIND_COLORS: Dict[Optional[LineEnding], str] = {
    LineEnding.CRLF: CRLF_COLOR,
    LineEnding.LF: LF_COLOR,
    None: MIXED_COLOR,
}
INDICATORS: Dict[Optional[LineEnding], str] = {
    LineEnding.CRLF: "C",
    LineEnding.LF: "L",
    None: "X",
}


class FileListError(Exception):
    """Raised when the list of files to process cannot be built."""


def paint(text: str, color: str) -> str:
    return f"{color}{text}{RESET}"


def pattern_root(pattern: str) -> str:
    """Return the leading part of a glob pattern that has no wildcards."""
    parts: List[str] = []
    for part in Path(pattern).parts:
        if any(c in part for c in "*?["):
            break
        parts.append(part)
    return os.path.join(*parts) if parts else ""


def find_files(
    pattern: str = DEFAULT_PATTERN,
    ignore_dirs: Optional[List[str]] = None,
) -> List[str]:
    """Find all regular files matching a recursive glob pattern."""
    if ignore_dirs is None:
        ignore_dirs = DEFAULT_IGNORE_DIRS

    ignore_dirs_set = set(ignore_dirs)
    root: str = pattern_root(pattern)
    all_files: List[str] = []

    for file_path in glob.glob(pattern, recursive=True):
        if not os.path.isfile(file_path):
            continue
        # Skip files below an ignored directory, looking only under the root
        relative = os.path.relpath(file_path, root) if root else file_path
        if ignore_dirs_set.intersection(Path(relative).parts[:-1]):
            continue
        all_files.append(file_path)

    return sorted(all_files)


def list_git_files(pattern: str = DEFAULT_PATTERN) -> List[str]:
    """
    List the text files git knows about, tracked or untracked.

    git grep -I leaves out files git considers binary. Exit code 1 from
    git grep means nothing matched.
    """
    git_pattern = "*" if pattern == DEFAULT_PATTERN else pattern
    command = [
        "git",
        "grep",
        "-I",
        "--name-only",
        "--untracked",
        "-e",
        ".",
        "--",
        git_pattern,
    ]
    try:
        result = subprocess.run(command, capture_output=True, check=False)
    except OSError as e:
        raise FileListError(f"Run git command failed: {e}") from e

    if result.returncode == 1 and not result.stdout.strip():
        return []
    if result.returncode != 0:
        raise FileListError(f"Git command failed with exit code: {result.returncode}")

    output: str = result.stdout.decode("utf-8", errors="replace")
    return [line.strip() for line in output.split("\n") if line.strip()]


def measure_file(file_path: str) -> LineStatistics:
    """Measure the line endings of a single file."""
    with open(file_path, "rb") as f:
        return measure(f)


def convert_file(file_path: str, ending: LineEnding) -> bool:
    """
    Rewrite a file with the given line ending.

    The converted bytes are built in memory and only written back when they
    differ from the original. They go to a temporary file in the same
    directory which then replaces the original, so an interrupted write
    leaves the file as it was. Returns True if the file was rewritten.
    """
    with open(file_path, "rb") as f:
        original_content: bytes = f.read()

    converted = io.BytesIO()
    convert_to(io.BytesIO(original_content), converted, ending)
    modified_content: bytes = converted.getvalue()

    if original_content == modified_content:
        with log_lock:
            logger.debug("No changes needed for file: %s", file_path)
        return False

    # Write next to the original, then swap it in
    fd, temp_path = tempfile.mkstemp(
        dir=os.path.dirname(os.path.abspath(file_path)),
        prefix=os.path.basename(file_path) + ".",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(modified_content)
        shutil.copymode(file_path, temp_path)
        os.replace(temp_path, file_path)
    except OSError:
        try:
            os.remove(temp_path)
        except OSError as cleanup_err:
            with log_lock:
                logger.error(
                    "Failed to remove temporary file %s: %s",
                    temp_path,
                    str(cleanup_err),
                )
        raise

    with log_lock:
        logger.debug("Updated file: %s", file_path)
    return True


def worker_count(max_workers: Optional[int], file_count: int) -> int:
    """Pick the thread pool size for a batch of files."""
    if max_workers is None:
        # Use minimum of (number of CPUs * 2) or 32, but not more than number of files
        cpu_count: Optional[int] = os.cpu_count()
        max_workers = (cpu_count or 2) * 2
    return max(1, min(max_workers, 32, file_count))


def measure_files(
    files: List[str], max_workers: Optional[int] = None
) -> Tuple[Dict[str, LineStatistics], int]:
    """Measure files in parallel. Returns the statistics per file and the error count."""
    results: Dict[str, LineStatistics] = {}
    error_count: int = 0
    workers = worker_count(max_workers, len(files))

    with log_lock:
        logger.debug("Using %d worker threads for measuring %d files", workers, len(files))

    with tqdm(total=len(files), desc="Measuring files", unit="file", disable=None) as pbar:
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_file = {
                executor.submit(measure_file, file_path): file_path
                for file_path in files
            }

            for future in concurrent.futures.as_completed(future_to_file):
                file_path = future_to_file[future]
                try:
                    results[file_path] = future.result()
                except OSError as e:
                    error_count += 1
                    with log_lock:
                        logger.error("Measure file %s failed: %s", file_path, str(e))
                finally:
                    pbar.update(1)

    return results, error_count


def convert_files(
    files: List[str], ending: LineEnding, max_workers: Optional[int] = None
) -> Tuple[List[str], int]:
    """Convert files in parallel. Returns the rewritten files, in input order, and the error count."""
    changed: Dict[str, bool] = {}
    error_count: int = 0
    workers = worker_count(max_workers, len(files))

    with log_lock:
        logger.debug("Using %d worker threads for converting %d files", workers, len(files))

    with tqdm(total=len(files), desc=f"Converting to {ending}", unit="file", disable=None) as pbar:
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_file = {
                executor.submit(convert_file, file_path, ending): file_path
                for file_path in files
            }

            for future in concurrent.futures.as_completed(future_to_file):
                file_path = future_to_file[future]
                try:
                    changed[file_path] = future.result()
                except OSError as e:
                    error_count += 1
                    with log_lock:
                        logger.error("Convert file %s failed: %s", file_path, str(e))
                finally:
                    pbar.update(1)

    return [f for f in files if changed.get(f)], error_count


def format_measurement(file_path: str, stats: LineStatistics, color: bool = False) -> str:
    kind = stats.classify()
    indicator = INDICATORS[kind]
    crlf_text = f"crlf: {stats.crlf_count:4}"
    lf_text = f"lf: {stats.lf_count:4}"
    if color:
        indicator = paint(indicator, KIND_COLORS[kind])
        crlf_text = paint(crlf_text, CRLF_COLOR)
        lf_text = paint(lf_text, LF_COLOR)
    return f"{indicator}, {crlf_text}, {lf_text}, {file_path}"


def format_conversion(file_path: str, ending: LineEnding, color: bool = False) -> str:
    ending_text = paint(str(ending), KIND_COLORS[ending]) if color else str(ending)
    return f"set {file_path} to {ending_text}"


def main() -> int:  # pylint: disable=too-many-return-statements,too-many-branches,too-many-statements
    log_handler: Optional[logging.FileHandler] = None
    try:
        version: str = getattr(sys.modules[__name__], "__version__", "1.0.0")

        parser = argparse.ArgumentParser(
            description="Check and change line ending for text files"
        )
        parser.add_argument(
            "action",
            choices=["measure", "set-crlf", "set-lf"],
            help="Report line endings, or rewrite files to CRLF or LF",
        )
        parser.add_argument(
            "pattern",
            nargs="?",
            default=DEFAULT_PATTERN,
            help="File name pattern (using glob). If --git-file is given, "
            f"this pattern is passed to git grep (default: {DEFAULT_PATTERN})",
        )
        parser.add_argument(
            "-g",
            "--git-file",
            action="store_true",
            help="Use git grep to get the text file list",
        )
        parser.add_argument(
            "--ignore-dirs",
            nargs="+",
            default=[],
            help="Directories to ignore when globbing "
            "(default: .git, .github, __pycache__, node_modules, venv, .venv)",
        )
        parser.add_argument(
            "-v", "--verbose", action="store_true", help="Show detailed output"
        )
        parser.add_argument(
            "--log-file",
            default=None,
            help="Also append log messages to this file (it is never processed)",
        )
        parser.add_argument(
            "--workers",
            type=int,
            default=None,
            help="Number of worker threads for parallel processing "
            "(default: auto-detect based on CPU count)",
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"crlf v{version}",
            help="Show program version and exit",
        )

        args = parser.parse_args()

        # Set logging level based on verbosity
        if args.verbose:
            logger.setLevel(logging.DEBUG)

        if args.log_file:
            log_handler = logging.FileHandler(args.log_file, mode="a")
            log_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logging.getLogger().addHandler(log_handler)

        logger.debug("crlf v%s", version)

        # Validate workers count
        if args.workers is not None and args.workers <= 0:
            logger.warning(
                "Invalid worker count (%d), using auto-detection instead", args.workers
            )
            args.workers = None

        ignore_dirs: List[str] = args.ignore_dirs or DEFAULT_IGNORE_DIRS

        start_time: float = time.time()

        try:
            if args.git_file:
                logger.debug("Listing git files matching: %s", args.pattern)
                files: List[str] = list_git_files(args.pattern)
            else:
                logger.debug(
                    "Searching for files matching %s, ignoring: %s",
                    args.pattern,
                    ", ".join(ignore_dirs),
                )
                files = find_files(args.pattern, ignore_dirs)
        except FileListError as e:
            logger.error("%s", str(e))
            return 1

        # Never process the file we are logging to
        if args.log_file:
            log_path = os.path.abspath(args.log_file)
            files = [f for f in files if os.path.abspath(f) != log_path]

        if not files:
            logger.warning("No matching files found.")
            return 0

        logger.debug("Found %d files to process.", len(files))

        color: bool = sys.stdout.isatty()
        error_count: int

        if args.action == "measure":
            results, error_count = measure_files(files, max_workers=args.workers)
            for file_path in files:
                if file_path in results:
                    print(format_measurement(file_path, results[file_path], color))
        else:
            ending = ACTION_ENDINGS[args.action]
            changed, error_count = convert_files(files, ending, max_workers=args.workers)
            for file_path in changed:
                print(format_conversion(file_path, ending, color))

        execution_time: float = time.time() - start_time
        logger.debug("Done! Processed %d files in %.2f seconds.", len(files), execution_time)

        if error_count > 0:
            logger.warning("Encountered errors while processing %d files", error_count)
            return 1
        return 0
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 130
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        if logger.isEnabledFor(logging.DEBUG):
            import traceback  # pylint: disable=import-outside-toplevel

            logger.debug("Traceback: %s", traceback.format_exc())
        return 1
    finally:
        if log_handler is not None:
            logging.getLogger().removeHandler(log_handler)
            log_handler.close()


if __name__ == "__main__":
    sys.exit(main())

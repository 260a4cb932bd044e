"""
Result codes, exceptions and the per-run result aggregator.
"""

import threading
from enum import IntEnum
from pathlib import Path

from django.core.exceptions import ImproperlyConfigured


class ResultCode(IntEnum):
    """
    The subset of LDAP result codes a split run can finish with.

    The numeric values are the ones defined in RFC 4511 and used by the LDAP
    client tools, so they can be handed straight to ``sys.exit()``.
    """

    SUCCESS = 0
    LOCAL_ERROR = 82
    PARAM_ERROR = 89


class SplitConfigurationError(ImproperlyConfigured):
    """
    Raised when a split is configured in a way that can never succeed.

    These are always raised before any source is read or any output file is
    created.

    Args:
        msg: The human readable description of the problem.

    Keyword Args:
        result_code: The result code the run should finish with.

    """

    def __init__(
        self, msg: str, result_code: ResultCode = ResultCode.PARAM_ERROR
    ) -> None:
        super().__init__(msg)
        self.result_code = result_code


class SplitIOError(OSError):
    """
    Raised for unrecoverable I/O problems: a source that cannot be read, an
    output file that cannot be written, a corrupt compressed or encrypted
    stream.
    """

    result_code = ResultCode.LOCAL_ERROR


class IncorrectPassphraseError(SplitIOError):
    """Raised when an encrypted stream cannot be decrypted with the passphrase."""


class SplitResult:
    """
    Accumulates the counts for one split run and computes its final status.

    Counters may be bumped from any thread; each update takes the instance
    lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        #: Number of records read from the sources, malformed ones included
        self.entries_read: int = 0
        #: Number of outside entries dropped because no outside set was asked for
        self.entries_excluded: int = 0
        #: Number of records that could not be parsed
        self.parse_errors: int = 0
        #: Number of descendant entries whose branch could not be resolved
        self.orphan_errors: int = 0
        #: Records written, keyed by sink name
        self.sink_counts: dict[str, int] = {}
        #: Paths of the files created, keyed by sink name
        self.sink_paths: dict[str, Path] = {}
        #: Message of the I/O error that stopped the run, if any
        self.fatal_error: str | None = None

    def record_read(self) -> int:
        with self._lock:
            self.entries_read += 1
            return self.entries_read

    def record_excluded(self) -> None:
        with self._lock:
            self.entries_excluded += 1

    def record_parse_error(self) -> None:
        with self._lock:
            self.parse_errors += 1

    def record_orphan(self) -> None:
        with self._lock:
            self.orphan_errors += 1

    def record_written(self, sink_name: str, path: Path) -> None:
        with self._lock:
            self.sink_paths.setdefault(sink_name, path)
            self.sink_counts[sink_name] = self.sink_counts.get(sink_name, 0) + 1

    def record_fatal(self, message: str) -> None:
        with self._lock:
            if self.fatal_error is None:
                self.fatal_error = message

    @property
    def result_code(self) -> ResultCode:
        """
        ``LOCAL_ERROR`` if anything went wrong during the run, ``SUCCESS``
        otherwise, including runs that wrote nothing at all.
        """
        if self.fatal_error or self.parse_errors or self.orphan_errors:
            return ResultCode.LOCAL_ERROR
        return ResultCode.SUCCESS

    @property
    def succeeded(self) -> bool:
        return self.result_code == ResultCode.SUCCESS

    @property
    def errors_path(self) -> Path | None:
        from .writers import ERRORS_SINK

        return self.sink_paths.get(ERRORS_SINK)

    def report(self) -> list[str]:
        """
        Build the human readable summary of the run.

        Returns:
            One string per line of the report.

        """
        lines = [f"Processing complete.  {self.entries_read} total entries read."]
        if self.entries_excluded:
            lines.append(
                f"{self.entries_excluded} entries were excluded because they "
                "were outside the split base DN."
            )
        if self.parse_errors:
            lines.append(f"{self.parse_errors} records could not be parsed.")
        if self.orphan_errors:
            lines.append(
                f"{self.orphan_errors} entries could not be matched to a set "
                "because their parent entry was not found."
            )
        for name in sorted(self.sink_counts):
            lines.append(
                f"Wrote {self.sink_counts[name]} entries to {self.sink_paths[name].name}."
            )
        if self.errors_path is not None:
            lines.append(f"Records with errors were written to {self.errors_path}.")
        if self.fatal_error:
            lines.append(f"Processing stopped early: {self.fatal_error}")
        return lines

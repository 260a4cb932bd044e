"""
Output sinks.

One sink per set (``<base>.set1`` .. ``<base>.setN``), the optional
``<base>.outside-split`` sink and the ``<base>.errors`` sink.  Sinks are created
on their first record, so a sink that never receives anything never exists on
disk.
"""

import io
import logging
import threading
from pathlib import Path

from .reader import Entry, ParseError
from .results import SplitIOError, SplitResult
from .streams import LayeredStream, open_target
from .typing import PartitionIndex

logger = logging.getLogger(__name__)

ERRORS_SINK = "errors"
OUTSIDE_SINK = "outside-split"


def set_sink_name(partition: PartitionIndex) -> str:
    """Sets are numbered from 1 in file names: partition 0 is ``set1``."""
    return f"set{partition + 1}"


class Sink:
    """
    One output file.

    Args:
        name: The sink name, which is also the file name suffix.
        path: The file path.
        stream: The opened binary stream to write LDIF into.

    """

    def __init__(self, name: str, path: Path, stream: LayeredStream) -> None:
        self.name = name
        self.path = path
        self.stream = stream
        # Records with invalid UTF-8 carry surrogate escapes back to the errors sink
        self.text = io.TextIOWrapper(
            stream.top, encoding="utf-8", errors="surrogateescape", newline="\n"
        )
        stream.push(self.text)
        self.count = 0

    def write_entry(self, entry: Entry) -> None:
        self.text.writelines(entry.content_lines)
        self.text.write("\n")
        self.count += 1

    def write_error(self, message: str, lines: list[str]) -> None:
        """
        Write a record that could not be placed in a set, preceded by the
        reason as LDIF comment lines.
        """
        for line in message.splitlines():
            self.text.write(f"# {line}\n")
        self.text.writelines(lines)
        self.text.write("\n")
        self.count += 1

    def close(self) -> None:
        self.stream.close()


class OutputWriterSet:
    """
    All the sinks for one run.

    Writes are serialized by one lock, so records reach each file in the order
    :py:meth:`write` was called.

    Args:
        base_path: Output file names are this path plus ``.<sink name>``.
        result: Where per-sink counts are recorded.

    Keyword Args:
        compress: gzip every output file.
        passphrase: Encrypt every output file with this passphrase.

    """

    def __init__(
        self,
        base_path: Path,
        result: SplitResult,
        compress: bool = False,
        passphrase: str | None = None,
    ) -> None:
        self.base_path = base_path
        self.result = result
        self.compress = compress
        self.passphrase = passphrase
        self._sinks: dict[str, Sink] = {}
        self._lock = threading.Lock()

    def path_for(self, name: str) -> Path:
        return Path(f"{self.base_path}.{name}")

    @property
    def sinks(self) -> dict[str, Sink]:
        return dict(self._sinks)

    def _get_sink(self, name: str) -> Sink:
        sink = self._sinks.get(name)
        if sink is None:
            path = self.path_for(name)
            stream = open_target(path, compress=self.compress, passphrase=self.passphrase)
            sink = Sink(name, path, stream)
            self._sinks[name] = sink
            logger.debug("ldifsplit.writers.created sink=%s path=%s", name, path)
        return sink

    def write(
        self,
        record: Entry | ParseError,
        sinks: list[str],
        error: str | None = None,
    ) -> None:
        """
        Write ``record`` to each of ``sinks``.

        Args:
            record: The entry or parse error to write.
            sinks: The sink names.

        Keyword Args:
            error: If given, write the raw record as an error with this message
                instead of writing it as an entry.

        Raises:
            SplitIOError: a file could not be created or written.

        """
        with self._lock:
            for name in sinks:
                sink = self._get_sink(name)
                try:
                    if error is not None:
                        sink.write_error(error, record.lines)
                    else:
                        sink.write_entry(record)  # type: ignore[arg-type]
                except (OSError, ValueError) as e:
                    msg = f"Error writing to {sink.path}: {e}"
                    raise SplitIOError(msg) from e
                self.result.record_written(name, sink.path)

    def close(self) -> None:
        """
        Close every sink, even if closing one of them fails.

        Raises:
            SplitIOError: the first close failure, after all sinks were closed.

        """
        first_error: SplitIOError | None = None
        with self._lock:
            for sink in self._sinks.values():
                try:
                    sink.close()
                except SplitIOError as e:
                    logger.error("ldifsplit.writers.close.failed path=%s error=%s", sink.path, e)  # noqa: TRY400
                    first_error = first_error or e
        if first_error is not None:
            raise first_error

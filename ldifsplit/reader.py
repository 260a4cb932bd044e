"""
Reading entries from LDIF sources.

:py:class:`LDIFSourceReader` turns an ordered list of LDIF files into one
ordered sequence of :py:class:`Entry` and :py:class:`ParseError` objects.  Each
record is parsed on its own with :py:class:`ldif.LDIFRecordList`, so one
malformed record does not stop the rest of the input from being read.
"""

import io
import logging
import zlib
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

import ldap
import ldif

from .dn import DN
from .results import SplitIOError
from .schema import Schema
from .streams import open_source
from .typing import EntryAttributes

logger = logging.getLogger(__name__)


class Entry:
    """
    One parsed LDIF entry.

    Args:
        dn: The parsed DN.
        attributes: Attribute name to values, in the order they appeared.
        lines: The raw lines of the record, line terminators included.
        source: The name of the file the record was read from.
        line_number: The line number of the first line of the record.

    """

    __slots__ = ("attributes", "dn", "line_number", "lines", "source")

    def __init__(
        self,
        dn: DN,
        attributes: EntryAttributes,
        lines: list[str],
        source: str,
        line_number: int,
    ) -> None:
        self.dn = dn
        self.attributes = attributes
        self.lines = lines
        self.source = source
        self.line_number = line_number

    def __repr__(self) -> str:
        return f"<Entry {self.dn.value!r} from {self.source}:{self.line_number}>"

    @property
    def content_lines(self) -> list[str]:
        """The record lines without comments, as they appeared in the source."""
        return _strip_non_content(self.lines)

    def get_values(self, attribute: str) -> list[bytes]:
        """
        Return the values of ``attribute``, matching the name without regard to
        case.  Values of ``attribute`` with options (``cn;lang-en``) are not
        included.
        """
        name = attribute.lower()
        values: list[bytes] = []
        for key, vals in self.attributes.items():
            if key.lower() == name:
                values.extend(vals)
        return values


class ParseError:
    """
    A record that could not be parsed into an entry.

    Args:
        message: What was wrong with the record.
        lines: The raw lines of the record, line terminators included.
        source: The name of the file the record was read from.
        line_number: The line number of the first line of the record.

    """

    __slots__ = ("line_number", "lines", "message", "source")

    def __init__(
        self, message: str, lines: list[str], source: str, line_number: int
    ) -> None:
        self.message = message
        self.lines = lines
        self.source = source
        self.line_number = line_number

    def __repr__(self) -> str:
        return f"<ParseError {self.source}:{self.line_number} {self.message!r}>"


def _strip_non_content(lines: list[str]) -> list[str]:
    """
    Drop comment lines (including their folded continuations) and ``version:``
    lines from a record.
    """
    content: list[str] = []
    in_comment = False
    for line in lines:
        if line.startswith(" ") and in_comment:
            continue
        in_comment = line.startswith("#")
        if in_comment:
            continue
        if not content and line.lower().startswith("version:"):
            continue
        content.append(line)
    return content


class LDIFSourceReader:
    """
    Iterate over the records of one or more LDIF files as if they were one.

    Iterating yields :py:class:`Entry` objects for good records and
    :py:class:`ParseError` objects for bad ones, in input order.  A record never
    spans two files.

    Args:
        sources: The files to read, in order.
        schema: Used to parse and normalize the entry DNs.

    Keyword Args:
        passphrase: The passphrase for encrypted sources.
        compressed: Treat every source as gzip compressed.

    Raises:
        SplitIOError: while iterating, if a source can not be opened or read.

    """

    def __init__(
        self,
        sources: list[Path],
        schema: Schema,
        passphrase: str | None = None,
        compressed: bool = False,
    ) -> None:
        self.sources = sources
        self.schema = schema
        self.passphrase = passphrase
        self.compressed = compressed

    def __iter__(self) -> Iterator[Entry | ParseError]:
        for path in self.sources:
            logger.debug("ldifsplit.reader.open path=%s", path)
            with open_source(
                path, passphrase=self.passphrase, compressed=self.compressed
            ) as stream:
                for lines, line_number in self._records(stream.top, path):
                    result = self.parse_record(lines, str(path), line_number)
                    if result is not None:
                        yield result

    def _records(
        self, fh: BinaryIO, path: Path
    ) -> Iterator[tuple[list[str], int]]:
        """
        Split a binary stream into blank-line separated records.

        Yields:
            (lines, line number of the first line) for each record.

        """
        lines: list[str] = []
        start = 0
        line_number = 0
        try:
            for raw_line in fh:
                line_number += 1
                line = raw_line.decode("utf-8", errors="surrogateescape")
                if line.endswith("\r\n"):
                    line = line[:-2] + "\n"
                if not line.strip():
                    if lines:
                        yield lines, start
                        lines = []
                    continue
                if not lines:
                    start = line_number
                if not line.endswith("\n"):
                    line += "\n"
                lines.append(line)
        except SplitIOError:
            raise
        except (OSError, EOFError, zlib.error) as e:
            msg = f"Error reading from {path} near line {line_number}: {e}"
            raise SplitIOError(msg) from e
        if lines:
            yield lines, start

    def parse_record(
        self, lines: list[str], source: str, line_number: int
    ) -> Entry | ParseError | None:
        """
        Parse the lines of one record.

        Args:
            lines: The raw record lines.
            source: The file name, for messages.
            line_number: The line the record starts on, for messages.

        Returns:
            The entry, a parse error, or ``None`` if the record holds nothing
            but comments and a ``version:`` line.

        """
        content = _strip_non_content(lines)
        if not content:
            return None
        where = f"{source}:{line_number}"
        text = "".join(content)
        try:
            text.encode("utf-8")
        except UnicodeEncodeError:
            return ParseError(
                f"Record at {where} is not valid UTF-8", lines, source, line_number
            )
        parser = ldif.LDIFRecordList(io.StringIO(text), max_entries=1)
        try:
            parser.parse()
        except (ValueError, KeyError, ldap.LDAPError) as e:
            return ParseError(
                f"Unable to parse the record at {where}: {e}",
                lines,
                source,
                line_number,
            )
        if not parser.all_records:
            return ParseError(
                f"The record at {where} does not contain an LDIF entry",
                lines,
                source,
                line_number,
            )
        dn_string, attributes = parser.all_records[0]
        try:
            dn = DN(dn_string, self.schema)
        except ldap.DECODING_ERROR as e:  # type: ignore[attr-defined]
            return ParseError(
                f'The record at {where} has an invalid DN "{dn_string}": {e}',
                lines,
                source,
                line_number,
            )
        return Entry(dn, attributes, lines, source, line_number)

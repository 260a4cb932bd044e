"""
Tests for reading LDIF sources.
"""

import gzip
import tempfile
import unittest
from pathlib import Path

from ldifsplit.reader import Entry, LDIFSourceReader, ParseError
from ldifsplit.results import SplitIOError
from ldifsplit.schema import Schema


PEOPLE_LDIF = """\
version: 1

# The top of the tree
dn: dc=example,dc=com
objectClass: top
objectClass: domain
dc: example

dn: ou=People,dc=example,dc=com
objectClass: top
objectClass: organizationalUnit
ou: People
description: A description that is long enough that it has to be folded onto
  a second line

dn: uid=jdoe,ou=People,dc=example,dc=com
objectClass: person
uid: jdoe
CN: John Doe
cn: Johnny
sn: Doe
"""


class ReaderTestCase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.path = Path(self.tmpdir.name)
        self.schema = Schema()

    def write(self, name, content):
        path = self.path / name
        path.write_text(content, encoding="utf-8")
        return path

    def read(self, *paths, **kwargs):
        return list(LDIFSourceReader(list(paths), self.schema, **kwargs))


class TestLDIFSourceReader(ReaderTestCase):
    """Test iterating over LDIF sources."""

    def test_reads_entries_in_order(self):
        records = self.read(self.write("people.ldif", PEOPLE_LDIF))
        self.assertEqual(
            [str(r.dn) for r in records],
            [
                "dc=example,dc=com",
                "ou=People,dc=example,dc=com",
                "uid=jdoe,ou=People,dc=example,dc=com",
            ],
        )
        for record in records:
            self.assertIsInstance(record, Entry)

    def test_folded_lines_are_unfolded(self):
        records = self.read(self.write("people.ldif", PEOPLE_LDIF))
        self.assertEqual(
            records[1].get_values("description"),
            [
                b"A description that is long enough that it has to be folded onto "
                b"a second line"
            ],
        )

    def test_get_values_ignores_attribute_name_case(self):
        entry = self.read(self.write("people.ldif", PEOPLE_LDIF))[2]
        self.assertEqual(sorted(entry.get_values("cn")), [b"John Doe", b"Johnny"])
        self.assertEqual(entry.get_values("mail"), [])

    def test_records_keep_source_and_line_number(self):
        path = self.write("people.ldif", PEOPLE_LDIF)
        records = self.read(path)
        self.assertEqual(records[0].source, str(path))
        self.assertEqual(records[0].line_number, 3)
        self.assertEqual(records[0].lines[0], "# The top of the tree\n")
        self.assertEqual(records[2].line_number, 16)

    def test_multiple_sources_are_concatenated(self):
        first = self.write("one.ldif", "dn: dc=example,dc=com\ndc: example\n")
        second = self.write("two.ldif", "dn: ou=People,dc=example,dc=com\nou: People\n")
        records = self.read(first, second)
        self.assertEqual(
            [str(r.dn) for r in records],
            ["dc=example,dc=com", "ou=People,dc=example,dc=com"],
        )
        self.assertEqual(records[1].source, str(second))

    def test_crlf_line_endings(self):
        path = self.path / "crlf.ldif"
        path.write_bytes(b"dn: dc=example,dc=com\r\ndc: example\r\n\r\n")
        records = self.read(path)
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].get_values("dc"), [b"example"])

    def test_empty_file(self):
        self.assertEqual(self.read(self.write("empty.ldif", "")), [])

    def test_comment_only_records_are_skipped(self):
        path = self.write("comments.ldif", "# just a comment\n\ndn: dc=example,dc=com\ndc: example\n")
        records = self.read(path)
        self.assertEqual(len(records), 1)

    def test_gzip_source_is_detected(self):
        path = self.path / "people.ldif.gz"
        with gzip.open(path, "wt", encoding="utf-8") as fh:
            fh.write(PEOPLE_LDIF)
        self.assertEqual(len(self.read(path)), 3)
        self.assertEqual(len(self.read(path, compressed=True)), 3)

    def test_missing_source(self):
        with self.assertRaises(SplitIOError):
            self.read(self.path / "missing.ldif")


class TestMalformedRecords(ReaderTestCase):
    """Test that malformed records are reported and do not stop reading."""

    def test_line_without_separator(self):
        path = self.write(
            "bad.ldif",
            "dn: uid=bad,dc=example,dc=com\nthis line has no separator\n\n"
            "dn: uid=good,dc=example,dc=com\nuid: good\n",
        )
        records = self.read(path)
        self.assertEqual(len(records), 2)
        self.assertIsInstance(records[0], ParseError)
        self.assertEqual(records[0].line_number, 1)
        self.assertIn(str(path), records[0].message)
        self.assertEqual(
            records[0].lines,
            ["dn: uid=bad,dc=example,dc=com\n", "this line has no separator\n"],
        )
        self.assertIsInstance(records[1], Entry)

    def test_invalid_dn(self):
        records = self.read(self.write("bad.ldif", "dn: this is not a dn\ncn: x\n"))
        self.assertEqual(len(records), 1)
        self.assertIsInstance(records[0], ParseError)

    def test_record_without_dn(self):
        records = self.read(self.write("bad.ldif", "cn: x\nsn: y\n"))
        self.assertEqual(len(records), 1)
        self.assertIsInstance(records[0], ParseError)

    def test_invalid_utf8(self):
        path = self.path / "bad.ldif"
        path.write_bytes(b"dn: cn=\xff\xfe,dc=example,dc=com\ncn: x\n")
        records = self.read(path)
        self.assertEqual(len(records), 1)
        self.assertIsInstance(records[0], ParseError)
        self.assertIn("UTF-8", records[0].message)

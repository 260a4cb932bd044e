"""
Tests for the split_ldif management command.
"""

import tempfile
import unittest
from io import StringIO
from pathlib import Path

import django
from django.conf import settings
from django.core.management import call_command
from django.core.management.base import CommandError

from ldifsplit.management.commands.split_ldif import Command
from ldifsplit.results import ResultCode


# Configure Django settings for testing
if not settings.configured:
    settings.configure(
        INSTALLED_APPS=["ldifsplit"],
        LDIFSPLIT_ENCRYPTION_ITERATIONS=1000,
    )
django.setup()


BASE = "ou=People,dc=example,dc=com"

PEOPLE_LDIF = f"""\
dn: dc=example,dc=com
objectClass: domain
dc: example

dn: {BASE}
objectClass: organizationalUnit
ou: People

dn: uid=jdoe,{BASE}
objectClass: person
uid: jdoe
departmentNumber: 1

dn: uid=jsmith,{BASE}
objectClass: person
uid: jsmith
departmentNumber: 2

dn: cn=devices,uid=jsmith,{BASE}
objectClass: top
cn: devices
"""


class TestSplitLDIFCommand(unittest.TestCase):
    """Test running a split from the command line."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.path = Path(self.tmpdir.name)
        self.source = self.path / "people.ldif"
        self.source.write_text(PEOPLE_LDIF, encoding="utf-8")

    def run_command(self, *args):
        out = StringIO()
        call_command(Command(), *args, stdout=out)
        return out.getvalue()

    def test_hash_on_rdn(self):
        output = self.run_command(
            "hash-on-rdn", "-l", str(self.source), "-b", BASE, "--num-sets", "2"
        )
        self.assertIn("Processing complete.  5 total entries read.", output)
        self.assertIn("1 entries were excluded", output)

    def test_num_sets_is_required(self):
        with self.assertRaises(CommandError) as cm:
            self.run_command("hash-on-rdn", "-l", str(self.source), "-b", BASE)
        self.assertEqual(cm.exception.returncode, ResultCode.PARAM_ERROR)

    def test_filter_num_sets_defaults_from_filters(self):
        output = self.run_command(
            "filter",
            "-l",
            str(self.source),
            "-b",
            BASE,
            "--filter",
            "(departmentNumber=1)",
            "--add-entries-outside-split-base-dn-to-dedicated-set",
        )
        self.assertIn("Wrote 1 entries to people.ldif.outside-split.", output)
        self.assertIn("Wrote 2 entries to people.ldif.set1.", output)
        self.assertIn("Wrote 3 entries to people.ldif.set2.", output)

    def test_invalid_configuration(self):
        with self.assertRaises(CommandError) as cm:
            self.run_command(
                "filter",
                "-l",
                str(self.source),
                "-b",
                BASE,
                "--num-sets",
                "3",
                "--filter",
                "(departmentNumber=1)",
            )
        self.assertEqual(cm.exception.returncode, ResultCode.PARAM_ERROR)
        self.assertFalse(Path(f"{self.source}.set1").exists())

    def test_errors_set_local_error(self):
        with self.assertRaises(CommandError) as cm:
            self.run_command(
                "fewest-entries",
                "-l",
                str(self.source),
                "-b",
                BASE,
                "--num-sets",
                "2",
                "--assume-flat-dit",
            )
        self.assertEqual(cm.exception.returncode, ResultCode.LOCAL_ERROR)
        self.assertTrue(Path(f"{self.source}.errors").exists())

    def test_passphrase_file(self):
        passphrase_file = self.path / "passphrase"
        passphrase_file.write_text("secret\n", encoding="utf-8")
        self.run_command(
            "hash-on-rdn",
            "-l",
            str(self.source),
            "-b",
            BASE,
            "--num-sets",
            "2",
            "--encrypt-target",
            "--encryption-passphrase-file",
            str(passphrase_file),
        )
        with Path(f"{self.source}.set1").open("rb") as fh:
            self.assertEqual(fh.read(8), b"LDIFENC\x01")

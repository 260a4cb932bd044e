"""
Tests for compressed and encrypted streams.
"""

import io
import tempfile
import unittest
from pathlib import Path

from django.conf import settings

from ldifsplit.results import IncorrectPassphraseError, SplitIOError
from ldifsplit.streams import (
    ENCRYPTION_MAGIC,
    FRAME_SIZE,
    GZIP_MAGIC,
    PassphraseDecryptingReader,
    PassphraseEncryptedWriter,
    open_source,
    open_target,
)


# Configure Django settings for testing
if not settings.configured:
    settings.configure(
        INSTALLED_APPS=["ldifsplit"],
        LDIFSPLIT_ENCRYPTION_ITERATIONS=1000,
    )


def encrypt(data, passphrase="secret"):
    raw = io.BytesIO()
    writer = PassphraseEncryptedWriter(raw, passphrase, iterations=1000)
    writer.write(data)
    writer.close()
    return raw.getvalue()


class TestPassphraseEncryption(unittest.TestCase):
    """Test the encrypted stream format."""

    def test_round_trip_spanning_frames(self):
        data = bytes(range(256)) * (FRAME_SIZE // 128 + 3)
        encrypted = encrypt(data)
        self.assertTrue(encrypted.startswith(ENCRYPTION_MAGIC))
        self.assertNotIn(data[:64], encrypted)
        reader = io.BufferedReader(
            PassphraseDecryptingReader(io.BytesIO(encrypted), "secret")
        )
        self.assertEqual(reader.read(), data)

    def test_empty_stream(self):
        reader = PassphraseDecryptingReader(io.BytesIO(encrypt(b"")), "secret")
        self.assertEqual(reader.read(), b"")

    def test_wrong_passphrase(self):
        with self.assertRaises(IncorrectPassphraseError):
            PassphraseDecryptingReader(io.BytesIO(encrypt(b"data")), "wrong")

    def test_truncated_stream(self):
        encrypted = encrypt(b"some data that will be cut short")
        reader = PassphraseDecryptingReader(io.BytesIO(encrypted[:-10]), "secret")
        with self.assertRaises(SplitIOError):
            reader.read()

    def test_corrupt_frame(self):
        encrypted = bytearray(encrypt(b"some data that will be corrupted"))
        encrypted[-8] ^= 0xFF
        reader = PassphraseDecryptingReader(io.BytesIO(bytes(encrypted)), "secret")
        with self.assertRaises(SplitIOError):
            reader.read()


class TestOpenTarget(unittest.TestCase):
    """Test the layered output and input streams."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.path = Path(self.tmpdir.name) / "out.ldif"

    def write(self, data, **kwargs):
        stream = open_target(self.path, **kwargs)
        stream.top.write(data)
        stream.close()

    def read(self, **kwargs):
        with open_source(self.path, **kwargs) as stream:
            return stream.top.read()

    def test_plain(self):
        self.write(b"dn: dc=example,dc=com\n")
        self.assertEqual(self.path.read_bytes(), b"dn: dc=example,dc=com\n")

    def test_compressed(self):
        self.write(b"dn: dc=example,dc=com\n", compress=True)
        self.assertTrue(self.path.read_bytes().startswith(GZIP_MAGIC))
        self.assertEqual(self.read(), b"dn: dc=example,dc=com\n")

    def test_compressed_and_encrypted(self):
        self.write(b"dn: dc=example,dc=com\n", compress=True, passphrase="secret")
        self.assertTrue(self.path.read_bytes().startswith(ENCRYPTION_MAGIC))
        self.assertEqual(self.read(passphrase="secret"), b"dn: dc=example,dc=com\n")

    def test_encrypted_source_without_passphrase(self):
        self.write(b"dn: dc=example,dc=com\n", passphrase="secret")
        with self.assertRaises(SplitIOError):
            self.read()

    def test_encrypted_source_wrong_passphrase(self):
        self.write(b"dn: dc=example,dc=com\n", passphrase="secret")
        with self.assertRaises(IncorrectPassphraseError):
            self.read(passphrase="wrong")

    def test_unwritable_target(self):
        with self.assertRaises(SplitIOError):
            open_target(Path(self.tmpdir.name) / "missing" / "out.ldif")

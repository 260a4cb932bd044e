"""
Stream transforms for source and target files: gzip compression and
passphrase based encryption.

Encrypted streams start with a fixed header (magic, PBKDF2 iteration count,
salt and a check value that lets a reader reject a wrong passphrase before
producing any data), followed by AES-GCM encrypted frames and a zero length
end-of-stream frame.  The frame number is bound to each frame as associated
data so frames can not be dropped or reordered unnoticed.
"""

import gzip
import io
import os
import struct
from pathlib import Path
from typing import Any, BinaryIO

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .conf import get_encryption_iterations
from .results import IncorrectPassphraseError, SplitIOError

ENCRYPTION_MAGIC = b"LDIFENC\x01"
GZIP_MAGIC = b"\x1f\x8b"

FRAME_SIZE = 64 * 1024
KEY_SIZE = 32
NONCE_SIZE = 12

#: magic, iterations, salt, check nonce, check tag
_HEADER = struct.Struct(">8sI16s12s16s")
_LENGTH = struct.Struct(">I")
_FRAME_NUMBER = struct.Struct(">Q")


def derive_key(passphrase: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, iterations=iterations
    )
    return kdf.derive(passphrase.encode("utf-8"))


class PassphraseEncryptedWriter(io.RawIOBase):
    """
    Encrypt everything written to it into ``raw``.

    Closing the writer flushes the last frame and writes the end-of-stream
    marker; it does not close ``raw``.

    Args:
        raw: The binary stream to write the encrypted data to.
        passphrase: The passphrase the key is derived from.

    Keyword Args:
        iterations: PBKDF2 iteration count.  Defaults to
            ``settings.LDIFSPLIT_ENCRYPTION_ITERATIONS``.

    """

    def __init__(
        self, raw: BinaryIO, passphrase: str, iterations: int | None = None
    ) -> None:
        super().__init__()
        if iterations is None:
            iterations = get_encryption_iterations()
        salt = os.urandom(16)
        self._aead = AESGCM(derive_key(passphrase, salt, iterations))
        check_nonce = os.urandom(NONCE_SIZE)
        check_tag = self._aead.encrypt(check_nonce, b"", ENCRYPTION_MAGIC)
        self._raw = raw
        self._raw.write(
            _HEADER.pack(ENCRYPTION_MAGIC, iterations, salt, check_nonce, check_tag)
        )
        self._buffer = bytearray()
        self._frame = 0

    def writable(self) -> bool:
        return True

    def write(self, b: Any) -> int:
        data = bytes(b)
        self._buffer.extend(data)
        while len(self._buffer) >= FRAME_SIZE:
            self._write_frame(bytes(self._buffer[:FRAME_SIZE]))
            del self._buffer[:FRAME_SIZE]
        return len(data)

    def _write_frame(self, data: bytes) -> None:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._aead.encrypt(nonce, data, _FRAME_NUMBER.pack(self._frame))
        self._raw.write(_LENGTH.pack(len(ciphertext)) + nonce + ciphertext)
        self._frame += 1

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._buffer:
                self._write_frame(bytes(self._buffer))
                self._buffer.clear()
            self._raw.write(_LENGTH.pack(0))
            self._raw.flush()
        finally:
            super().close()


class PassphraseDecryptingReader(io.RawIOBase):
    """
    Decrypt a stream written by :py:class:`PassphraseEncryptedWriter`.

    Args:
        raw: The binary stream positioned at the encryption header.
        passphrase: The passphrase to derive the key from.
        name: Used in error messages.

    Raises:
        IncorrectPassphraseError: the passphrase does not match.
        SplitIOError: the header is truncated or not an encryption header.

    """

    def __init__(self, raw: BinaryIO, passphrase: str, name: str = "<stream>") -> None:
        super().__init__()
        self._raw = raw
        self.name = name
        header = self._read_exact(_HEADER.size)
        magic, iterations, salt, check_nonce, check_tag = _HEADER.unpack(header)
        if magic != ENCRYPTION_MAGIC:
            msg = f"{name} is not a passphrase-encrypted stream"
            raise SplitIOError(msg)
        self._aead = AESGCM(derive_key(passphrase, salt, iterations))
        try:
            self._aead.decrypt(check_nonce, check_tag, ENCRYPTION_MAGIC)
        except InvalidTag as e:
            msg = f"The passphrase provided for {name} is incorrect"
            raise IncorrectPassphraseError(msg) from e
        self._pending = b""
        self._frame = 0
        self._eof = False

    def _read_exact(self, size: int) -> bytes:
        data = self._raw.read(size)
        while data is not None and len(data) < size:
            more = self._raw.read(size - len(data))
            if not more:
                break
            data += more
        if data is None or len(data) < size:
            msg = f"Unexpected end of encrypted data in {self.name}"
            raise SplitIOError(msg)
        return data

    def _read_frame(self) -> None:
        (length,) = _LENGTH.unpack(self._read_exact(_LENGTH.size))
        if length == 0:
            self._eof = True
            return
        nonce = self._read_exact(NONCE_SIZE)
        ciphertext = self._read_exact(length)
        try:
            self._pending = self._aead.decrypt(
                nonce, ciphertext, _FRAME_NUMBER.pack(self._frame)
            )
        except InvalidTag as e:
            msg = f"Encrypted data in {self.name} is corrupt"
            raise SplitIOError(msg) from e
        self._frame += 1

    def readable(self) -> bool:
        return True

    def readinto(self, b: Any) -> int:
        while not self._pending and not self._eof:
            self._read_frame()
        n = min(len(b), len(self._pending))
        b[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n


class LayeredStream:
    """
    A stack of stream transforms, bottom (the file) first.

    Reads and writes go to :py:attr:`top`; :py:meth:`close` closes every layer
    from the top down so each transform can flush into the one below it.
    """

    def __init__(self, layers: list[Any], name: str) -> None:
        self.layers = layers
        self.name = name

    @property
    def top(self) -> Any:
        return self.layers[-1]

    def push(self, layer: Any) -> None:
        self.layers.append(layer)

    def close(self) -> None:
        error: Exception | None = None
        for layer in reversed(self.layers):
            try:
                layer.close()
            except (OSError, ValueError) as e:
                error = error or e
        if error is not None:
            msg = f"Error closing {self.name}: {error}"
            raise SplitIOError(msg) from error

    def __enter__(self) -> "LayeredStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def is_encrypted(stream: io.BufferedReader) -> bool:
    return stream.peek(len(ENCRYPTION_MAGIC))[: len(ENCRYPTION_MAGIC)] == ENCRYPTION_MAGIC


def is_gzipped(stream: io.BufferedReader) -> bool:
    return stream.peek(len(GZIP_MAGIC))[: len(GZIP_MAGIC)] == GZIP_MAGIC


def open_source(
    path: Path, passphrase: str | None = None, compressed: bool = False
) -> LayeredStream:
    """
    Open an LDIF source for binary reading, undoing encryption and
    compression.

    Encryption is recognized from the encryption header and compression from
    the gzip magic number, so ``compressed`` only needs to be set for inputs
    that can not be sniffed.

    Args:
        path: The file to open.

    Keyword Args:
        passphrase: The passphrase for encrypted files.
        compressed: Treat the file as gzip compressed.

    Raises:
        SplitIOError: the file can not be opened, is encrypted and no
            passphrase was given, or the passphrase is wrong.

    Returns:
        The opened stream; read from ``.top``.

    """
    try:
        raw = path.open("rb")
    except OSError as e:
        msg = f"Unable to open source LDIF file {path}: {e}"
        raise SplitIOError(msg) from e
    stream = LayeredStream([raw], str(path))
    try:
        if is_encrypted(raw):
            if not passphrase:
                msg = (
                    f"Source LDIF file {path} is encrypted but no encryption "
                    "passphrase was provided"
                )
                raise SplitIOError(msg)
            stream.push(
                io.BufferedReader(PassphraseDecryptingReader(raw, passphrase, str(path)))
            )
        if compressed or is_gzipped(stream.top):
            stream.push(gzip.GzipFile(fileobj=stream.top, mode="rb"))
    except BaseException:
        stream.close()
        raise
    return stream


def open_target(
    path: Path, compress: bool = False, passphrase: str | None = None
) -> LayeredStream:
    """
    Create an output file for binary writing, compressing and then encrypting
    what is written to it.

    Raises:
        SplitIOError: the file can not be created.

    """
    try:
        raw = path.open("wb")
    except OSError as e:
        msg = f"Unable to open output file {path} for writing: {e}"
        raise SplitIOError(msg) from e
    stream = LayeredStream([raw], str(path))
    try:
        if passphrase:
            stream.push(io.BufferedWriter(PassphraseEncryptedWriter(raw, passphrase)))
        if compress:
            stream.push(gzip.GzipFile(fileobj=stream.top, mode="wb"))
    except BaseException:
        stream.close()
        raise
    return stream

"""
Split configuration.

This module provides :py:class:`SplitConfiguration`, the validated description
of one split run, plus accessors for the process-wide defaults that may be
overridden from Django settings (``LDIFSPLIT_*``).
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any

import ldap
from django.conf import settings
from ldap_filter import Filter

from .dn import DN
from .results import ResultCode, SplitConfigurationError
from .schema import Schema


def _get_config(setting_name: str, default_value: Any) -> Any:
    """
    Get configuration value from Django settings with fallback.

    Settings are optional: when Django settings have not been configured at all
    the default is returned.

    Args:
        setting_name: Name of the setting (without LDIFSPLIT_ prefix)
        default_value: Default value if setting not found

    Returns:
        Configuration value from settings or default

    """
    if not settings.configured:
        return default_value
    return getattr(settings, f"LDIFSPLIT_{setting_name}", default_value)


def get_default_num_threads() -> int:
    """Get default worker count from settings or use fallback."""
    return _get_config("DEFAULT_NUM_THREADS", 1)


def get_progress_interval() -> int:
    """Get the number of entries between progress messages."""
    return _get_config("PROGRESS_INTERVAL", 1000)


def get_in_flight_per_thread() -> int:
    """Get how many records each worker may have queued ahead of the writer."""
    return _get_config("IN_FLIGHT_PER_THREAD", 64)


def get_encryption_iterations() -> int:
    """Get the PBKDF2 iteration count used for newly encrypted files."""
    return _get_config("ENCRYPTION_ITERATIONS", 600_000)


class StrategyKind(Enum):
    """The algorithms that can be used to pick a set for a branch entry."""

    HASH_ON_RDN = "hash-on-rdn"
    HASH_ON_ATTRIBUTE = "hash-on-attribute"
    FEWEST_ENTRIES = "fewest-entries"
    FILTER = "filter"


class OutsideMode(Enum):
    """What to do with entries that are not at or below the split base DN."""

    NONE = "none"
    DEDICATED = "dedicated"
    ALL = "all"
    DEDICATED_AND_ALL = "dedicated+all"

    @classmethod
    def from_flags(cls, to_all_sets: bool, to_dedicated_set: bool) -> "OutsideMode":
        if to_all_sets and to_dedicated_set:
            return cls.DEDICATED_AND_ALL
        if to_all_sets:
            return cls.ALL
        if to_dedicated_set:
            return cls.DEDICATED
        return cls.NONE

    @property
    def to_all_sets(self) -> bool:
        return self in (OutsideMode.ALL, OutsideMode.DEDICATED_AND_ALL)

    @property
    def to_dedicated_set(self) -> bool:
        return self in (OutsideMode.DEDICATED, OutsideMode.DEDICATED_AND_ALL)


def _filter_components(body: str) -> list[str]:
    """Split the concatenated ``(...)`` components of an AND or OR filter."""
    components = []
    depth = 0
    start = 0
    for i, c in enumerate(body):
        if c == "(":
            if depth == 0:
                start = i
            depth += 1
        elif c == ")":
            depth -= 1
            if depth == 0:
                components.append(body[start : i + 1])
    return components


def canonical_filter(value: str) -> str:
    """
    Return a form of the simplified filter string ``value`` that is the same
    for filters differing only in case or in the order of AND and OR
    components.
    """
    if value[:2] in ("(&", "(|"):
        components = sorted(
            canonical_filter(c) for c in _filter_components(value[2:-1])
        )
        return f"{value[:2]}{''.join(components)})"
    if value.startswith("(!"):
        return f"(!{canonical_filter(value[2:-1])})"
    return value.lower()


def read_passphrase_file(path: str | Path) -> str:
    """
    Read an encryption passphrase from the first line of ``path``.

    Args:
        path: The passphrase file.

    Raises:
        SplitConfigurationError: the file cannot be read or its first line is
            empty.

    Returns:
        The passphrase.

    """
    try:
        with Path(path).open(encoding="utf-8") as fh:
            passphrase = fh.readline().rstrip("\r\n")
    except OSError as e:
        msg = f"Unable to read the encryption passphrase file {path}: {e}"
        raise SplitConfigurationError(msg, ResultCode.LOCAL_ERROR) from e
    if not passphrase:
        msg = f"The encryption passphrase file {path} is empty."
        raise SplitConfigurationError(msg)
    return passphrase


class SplitConfiguration:
    """
    Everything needed to run one split.

    The constructor validates the combination of arguments and loads the
    schema, so a :py:class:`SplitConfiguration` that exists is one that can be
    run.  No source is opened and nothing is written while validating.

    Args:
        split_base_dn: The DN of the entry at the top of the subtree to split.
        num_sets: How many sets to split into.  Must be at least 2.
        sources: The LDIF files to read, in order.

    Keyword Args:
        strategy: Which algorithm to use for branch entries.
        attribute: For ``hash-on-attribute``, the attribute whose value(s) are
            hashed.
        use_all_values: For ``hash-on-attribute``, hash every value instead of
            only the first one.
        filters: For ``filter``, exactly ``num_sets - 1`` search filters.
        assume_flat_dit: Refuse every entry more than one level below the split
            base instead of tracking where branch entries went.
        add_outside_to_all_sets: Write entries outside the split base to every
            set.
        add_outside_to_dedicated_set: Write entries outside the split base to
            the ``.outside-split`` file.
        num_threads: Number of worker threads.
        source_compressed: The sources are gzip compressed.  Compressed sources
            are also detected automatically.
        target_base_path: The path output file names are derived from.
            Required when there is more than one source.
        compress_target: gzip the output files.
        encrypt_target: Encrypt the output files with the passphrase.
        encryption_passphrase: The passphrase for encrypted sources and
            targets.
        encryption_passphrase_file: A file whose first line is the passphrase.
        schema_paths: Schema files or directories of ``*.ldif`` schema files.

    Raises:
        SplitConfigurationError: the arguments can not describe a valid split.

    """

    def __init__(  # noqa: PLR0912, PLR0913, PLR0915
        self,
        split_base_dn: str,
        num_sets: int,
        sources: list[str | Path],
        strategy: StrategyKind | str = StrategyKind.HASH_ON_RDN,
        attribute: str | None = None,
        use_all_values: bool = False,
        filters: list[str] | None = None,
        assume_flat_dit: bool = False,
        add_outside_to_all_sets: bool = False,
        add_outside_to_dedicated_set: bool = False,
        num_threads: int | None = None,
        source_compressed: bool = False,
        target_base_path: str | Path | None = None,
        compress_target: bool = False,
        encrypt_target: bool = False,
        encryption_passphrase: str | None = None,
        encryption_passphrase_file: str | Path | None = None,
        schema_paths: list[str | Path] | None = None,
    ) -> None:
        try:
            self.strategy = StrategyKind(strategy)
        except ValueError as e:
            msg = f'Unknown split strategy "{strategy}"'
            raise SplitConfigurationError(msg) from e
        if not isinstance(num_sets, int) or num_sets < 2:  # noqa: PLR2004
            msg = f"The number of sets must be at least 2, not {num_sets}."
            raise SplitConfigurationError(msg)
        self.num_sets = num_sets

        self.sources = [Path(s) for s in sources]
        if not self.sources:
            msg = "At least one source LDIF file is required."
            raise SplitConfigurationError(msg)
        if len(self.sources) > 1 and target_base_path is None:
            msg = (
                "A target LDIF base path must be provided when more than one "
                "source LDIF file is given."
            )
            raise SplitConfigurationError(msg)
        self.target_base_path = (
            Path(target_base_path) if target_base_path is not None else self.sources[0]
        )

        if num_threads is None:
            num_threads = get_default_num_threads()
        if num_threads < 1:
            msg = f"The number of threads must be at least 1, not {num_threads}."
            raise SplitConfigurationError(msg)
        self.num_threads = num_threads

        self.attribute = attribute
        self.use_all_values = use_all_values
        if self.strategy == StrategyKind.HASH_ON_ATTRIBUTE and not attribute:
            msg = "The hash-on-attribute strategy needs an attribute name."
            raise SplitConfigurationError(msg)
        self.filters: list[str] = []
        if self.strategy == StrategyKind.FILTER:
            self.filters = self._validate_filters(filters or [])

        self.assume_flat_dit = assume_flat_dit
        self.outside_mode = OutsideMode.from_flags(
            add_outside_to_all_sets, add_outside_to_dedicated_set
        )
        self.source_compressed = source_compressed
        self.compress_target = compress_target
        self.encrypt_target = encrypt_target

        if encryption_passphrase is None and encryption_passphrase_file is not None:
            encryption_passphrase = read_passphrase_file(encryption_passphrase_file)
        self.encryption_passphrase = encryption_passphrase
        if encrypt_target and not encryption_passphrase:
            msg = "An encryption passphrase is required to encrypt the target files."
            raise SplitConfigurationError(msg)

        self.schema = self._load_schema(schema_paths)
        try:
            self.split_base_dn = DN(split_base_dn, self.schema)
        except ldap.DECODING_ERROR as e:  # type: ignore[attr-defined]
            msg = f'"{split_base_dn}" is not a valid split base DN'
            raise SplitConfigurationError(msg) from e

    def _validate_filters(self, filters: list[str]) -> list[str]:
        """
        Ensure the filter list has exactly ``num_sets - 1`` distinct, parsable
        filters.

        Returns:
            The filters, in order.

        """
        if len(filters) != self.num_sets - 1:
            msg = (
                f"The filter strategy needs exactly {self.num_sets - 1} filters "
                f"to split into {self.num_sets} sets, but {len(filters)} were given."
            )
            raise SplitConfigurationError(msg)
        seen: dict[str, str] = {}
        for f in filters:
            try:
                key = canonical_filter(Filter.parse(f).simplify().to_string())
            except Exception as e:  # noqa: BLE001
                msg = f'Unable to parse search filter "{f}": {e}'
                raise SplitConfigurationError(msg) from e
            if key in seen:
                msg = f'Search filter "{f}" duplicates filter "{seen[key]}".'
                raise SplitConfigurationError(msg)
            seen[key] = f
        return list(filters)

    def _load_schema(self, schema_paths: list[str | Path] | None) -> Schema:
        """
        Load the schema from the configured paths, from
        ``$INSTANCE_ROOT/config/schema`` or fall back to the built-in matching
        rules, in that order.
        """
        if schema_paths:
            return Schema.from_paths([Path(p) for p in schema_paths])
        instance_root = os.environ.get("INSTANCE_ROOT")
        if instance_root:
            schema = Schema.from_instance_root(Path(instance_root))
            if schema is not None:
                return schema
        return Schema()

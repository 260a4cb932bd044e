"""
Partition assignment strategies.

A :py:class:`SplitStrategy` maps a branch entry (an entry exactly one level
below the split base DN) to the index of the set it belongs in.  The four
algorithms are variants of one class, selected by
:py:class:`~ldifsplit.conf.StrategyKind` and dispatched through
:py:data:`ASSIGNERS`:

``hash-on-rdn``
    MD5 of the normalized RDN, modulo the number of sets.
``hash-on-attribute``
    MD5 of the normalized value (or all values) of an attribute; entries
    without the attribute fall back to ``hash-on-rdn``.
``fewest-entries``
    Whichever set currently holds the fewest entries.
``filter``
    The index of the first matching search filter, or the last set when no
    filter matches.
"""

import hashlib
import logging
import re
import threading
from collections.abc import Callable, Iterable
from typing import Any

from ldap_filter import Filter

from .classifier import Category, classify
from .conf import SplitConfiguration, StrategyKind
from .dn import DN
from .reader import Entry, ParseError
from .schema import Schema
from .typing import PartitionIndex

logger = logging.getLogger(__name__)

#: An extensible match item, such as ``(cn:dn:=Doe)`` or ``(:caseExactMatch:=Doe)``
_EXTENSIBLE_MATCH = re.compile(r"\([^()=]*:=")


class UnevaluableFilterError(ValueError):
    """
    Raised for a filter that can be parsed but not evaluated against entry
    data, such as one with an extensible match item.
    """


def hash_to_partition(data: bytes, num_sets: int) -> PartitionIndex:
    """
    Map ``data`` to a set index using the first four bytes of its MD5 digest.
    """
    digest = hashlib.md5(data).digest()  # noqa: S324
    return (int.from_bytes(digest[:4], "big") & 0x7FFFFFFF) % num_sets


class _AttributeMap(dict):
    """
    The filter evaluation view of an entry: lowercased attribute names mapped
    to string values, looked up without regard to case.
    """

    def __getitem__(self, key: str) -> Any:
        return super().__getitem__(key.lower())

    def get(self, key: str, default: Any = None) -> Any:
        return super().get(key.lower(), default)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and super().__contains__(key.lower())


def filter_data(entry: Entry) -> _AttributeMap:
    """
    Build the data :py:meth:`ldap_filter.Filter.match` evaluates: single
    valued attributes map to a string, multi-valued ones to a list.  Values
    that are not UTF-8 can not take part in filter matching and are left out.
    """
    collected: dict[str, list[str]] = {}
    for name, values in entry.attributes.items():
        for value in values:
            try:
                collected.setdefault(name.lower(), []).append(value.decode("utf-8"))
            except UnicodeDecodeError:
                continue
    data = _AttributeMap()
    for name, decoded in collected.items():
        if decoded:
            dict.__setitem__(data, name, decoded[0] if len(decoded) == 1 else decoded)
    return data


class SplitStrategy:
    """
    Assigns branch entries to sets.

    Build one with :py:meth:`from_configuration`.  The hash and filter
    variants hold no mutable state apart from a flag and may be used from any
    number of threads; ``fewest-entries`` keeps one counter per set behind a
    lock.

    Args:
        kind: Which algorithm to use.
        num_sets: How many sets there are.
        schema: Used to normalize RDNs and attribute values.

    Keyword Args:
        attribute: For ``hash-on-attribute``, the attribute to hash.
        use_all_values: For ``hash-on-attribute``, hash all values.
        filters: For ``filter``, the ``num_sets - 1`` filter strings.

    """

    def __init__(
        self,
        kind: StrategyKind,
        num_sets: int,
        schema: Schema,
        attribute: str | None = None,
        use_all_values: bool = False,
        filters: list[str] | None = None,
    ) -> None:
        self.kind = kind
        self.num_sets = num_sets
        self.schema = schema
        self.attribute = attribute
        self.use_all_values = use_all_values
        filters = filters or []
        self.filters = [Filter.parse(f) for f in filters]
        #: Indexes of filters that can not be evaluated against entry data
        self.unevaluable = {
            index for index, f in enumerate(filters) if _EXTENSIBLE_MATCH.search(f)
        }
        for index in sorted(self.unevaluable):
            logger.warning(
                "ldifsplit.strategy.filter.unevaluable filter=%s fallback=hash-on-rdn",
                filters[index],
            )
        self._lock = threading.Lock()
        self.counts: list[int] = [0] * num_sets
        #: Set once any filter has matched any entry
        self.filter_matched = False
        #: When set, the filter strategy assigns everything by RDN hash
        self.fallback_to_rdn = False

    @classmethod
    def from_configuration(cls, config: SplitConfiguration) -> "SplitStrategy":
        return cls(
            config.strategy,
            config.num_sets,
            config.schema,
            attribute=config.attribute,
            use_all_values=config.use_all_values,
            filters=config.filters,
        )

    @property
    def is_stateless(self) -> bool:
        """
        ``True`` when :py:meth:`assign` may be called from worker threads in
        any order without changing the outcome.
        """
        return self.kind != StrategyKind.FEWEST_ENTRIES

    def assign(self, entry: Entry) -> PartitionIndex:
        """
        Return the index of the set ``entry`` belongs in.

        Args:
            entry: A branch entry.

        Returns:
            An integer in ``[0, num_sets)``.

        """
        return ASSIGNERS[self.kind](self, entry)

    def record_assignment(self, partition: PartitionIndex) -> None:
        """
        Count an entry that was placed in ``partition`` without going through
        :py:meth:`assign`, such as a descendant following its branch.
        """
        if self.kind == StrategyKind.FEWEST_ENTRIES:
            with self._lock:
                self.counts[partition] += 1

    def scan_for_filter_matches(
        self, records: Iterable[Entry | ParseError], split_base_dn: DN
    ) -> bool:
        """
        Look for any branch entry in ``records`` matched by any filter,
        stopping at the first one.  If there is none the strategy switches to
        assigning every entry by RDN hash.

        Returns:
            Whether a match was found.

        """
        for record in records:
            if classify(record, split_base_dn) != Category.BRANCH:
                continue
            try:
                if self._first_matching_filter(record) is not None:  # type: ignore[arg-type]
                    return True
            except Exception:  # noqa: BLE001, S112
                continue
        self.fallback_to_rdn = True
        logger.info("ldifsplit.strategy.filter.no_matches fallback=hash-on-rdn")
        return False

    def _first_matching_filter(self, entry: Entry) -> int | None:
        """
        Return the index of the first filter matching ``entry``.

        Raises:
            UnevaluableFilterError: no earlier filter matched and the next one
                can not be evaluated.

        """
        data = filter_data(entry)
        for index, f in enumerate(self.filters):
            if index in self.unevaluable:
                msg = f"Search filter {index + 1} uses an extensible match item."
                raise UnevaluableFilterError(msg)
            if f.match(data):
                self.filter_matched = True
                return index
        return None


def _assign_hash_on_rdn(strategy: SplitStrategy, entry: Entry) -> PartitionIndex:
    return hash_to_partition(
        entry.dn.normalized_rdn.encode("utf-8"), strategy.num_sets
    )


def _assign_hash_on_attribute(
    strategy: SplitStrategy, entry: Entry
) -> PartitionIndex:
    attribute = strategy.attribute or ""
    values = entry.get_values(attribute)
    if not values:
        return _assign_hash_on_rdn(strategy, entry)
    if not strategy.use_all_values:
        return hash_to_partition(
            strategy.schema.normalize_bytes(attribute, values[0]), strategy.num_sets
        )
    normalized = sorted(
        {strategy.schema.normalize_bytes(attribute, v) for v in values}
    )
    return hash_to_partition(b"\x00".join(normalized), strategy.num_sets)


def _assign_fewest_entries(strategy: SplitStrategy, entry: Entry) -> PartitionIndex:  # noqa: ARG001
    with strategy._lock:
        counts = strategy.counts
        partition = min(range(len(counts)), key=counts.__getitem__)
        counts[partition] += 1
        return partition


def _assign_filter(strategy: SplitStrategy, entry: Entry) -> PartitionIndex:
    if strategy.fallback_to_rdn:
        return _assign_hash_on_rdn(strategy, entry)
    try:
        index = strategy._first_matching_filter(entry)
    except Exception as e:  # noqa: BLE001
        logger.debug(
            "ldifsplit.strategy.filter.unevaluable dn=%s error=%s", entry.dn, e
        )
        return _assign_hash_on_rdn(strategy, entry)
    if index is None:
        return strategy.num_sets - 1
    return index


#: The assignment function for each strategy variant
ASSIGNERS: dict[StrategyKind, Callable[[SplitStrategy, Entry], PartitionIndex]] = {
    StrategyKind.HASH_ON_RDN: _assign_hash_on_rdn,
    StrategyKind.HASH_ON_ATTRIBUTE: _assign_hash_on_attribute,
    StrategyKind.FEWEST_ENTRIES: _assign_fewest_entries,
    StrategyKind.FILTER: _assign_filter,
}

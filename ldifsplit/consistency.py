"""
Keeping every subtree together.

The :py:class:`HierarchyConsistencyEnforcer` decides which sinks each record
goes to.  Branch entries are assigned by the strategy and remembered in the
:py:class:`AncestryTable`; descendants follow their parent once the parent has
itself been placed in a set, and are remembered in turn; the
split base entry goes to every set; outside entries go wherever the outside
mode says.
"""

import threading
from collections.abc import Callable

from .classifier import Category
from .conf import SplitConfiguration
from .reader import Entry, ParseError
from .strategies import SplitStrategy
from .typing import NormalizedDN, PartitionIndex
from .writers import ERRORS_SINK, OUTSIDE_SINK, set_sink_name


class AncestryTable:
    """
    Which set each entry below the split base was written to, keyed by
    normalized DN.

    A descendant is only placed when its parent is in the table, so an entry
    whose parent was missing or malformed is never recorded and neither are
    its own children.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._partitions: dict[NormalizedDN, PartitionIndex] = {}

    def __len__(self) -> int:
        return len(self._partitions)

    def get(self, key: NormalizedDN) -> PartitionIndex | None:
        with self._lock:
            return self._partitions.get(key)

    def assign_once(
        self, key: NormalizedDN, assign: Callable[[], PartitionIndex]
    ) -> PartitionIndex:
        """
        Return the set already recorded for ``key``, or record and return the
        result of ``assign()``.  ``assign`` is called at most once per key.
        """
        with self._lock:
            partition = self._partitions.get(key)
            if partition is None:
                partition = assign()
                self._partitions[key] = partition
            return partition


class Routing:
    """
    Where one record should be written.

    Args:
        sinks: The sink names, in write order.  Empty means "drop".

    Keyword Args:
        error: Set for records going to the errors sink: the message to
            write above them.
        orphan: ``True`` when the error is an unresolvable descendant.

    """

    __slots__ = ("error", "orphan", "sinks")

    def __init__(
        self, sinks: list[str], error: str | None = None, orphan: bool = False
    ) -> None:
        self.sinks = sinks
        self.error = error
        self.orphan = orphan

    def __repr__(self) -> str:
        return f"Routing({self.sinks!r}, error={self.error!r})"


class HierarchyConsistencyEnforcer:
    """
    Route classified records to sinks while keeping each subtree in the set
    its branch entry was assigned to.

    When ``assume_flat_dit`` is set no ancestry table is kept at all and
    every entry more than one level below the split base is an error.

    Args:
        config: The split configuration.
        strategy: Assigns branch entries to sets.

    """

    def __init__(self, config: SplitConfiguration, strategy: SplitStrategy) -> None:
        self.split_base_dn = config.split_base_dn
        self.outside_mode = config.outside_mode
        self.strategy = strategy
        self.all_sets = [set_sink_name(i) for i in range(config.num_sets)]
        self.table: AncestryTable | None = (
            None if config.assume_flat_dit else AncestryTable()
        )

    def route(
        self,
        record: Entry | ParseError,
        category: Category,
        partition: PartitionIndex | None = None,
    ) -> Routing:
        """
        Decide where ``record`` goes.

        Args:
            record: The entry or parse error.
            category: What :py:func:`~ldifsplit.classifier.classify` said
                about it.

        Keyword Args:
            partition: For branch entries, the set the strategy already
                computed on a worker thread.  ``None`` means "ask the
                strategy now".

        Returns:
            The routing decision.

        """
        if category == Category.MALFORMED:
            return Routing([ERRORS_SINK], error=record.message)  # type: ignore[union-attr]
        if category == Category.BASE:
            return Routing(list(self.all_sets))
        if category == Category.OUTSIDE:
            return self._route_outside()
        entry: Entry = record  # type: ignore[assignment]
        if category == Category.BRANCH:
            return Routing([set_sink_name(self._assign_branch(entry, partition))])
        return self._route_descendant(entry)

    def _route_outside(self) -> Routing:
        sinks: list[str] = []
        if self.outside_mode.to_all_sets:
            sinks.extend(self.all_sets)
        if self.outside_mode.to_dedicated_set:
            sinks.append(OUTSIDE_SINK)
        return Routing(sinks)

    def _assign_branch(
        self, entry: Entry, partition: PartitionIndex | None
    ) -> PartitionIndex:
        def assign() -> PartitionIndex:
            if partition is not None:
                return partition
            return self.strategy.assign(entry)

        if self.table is None:
            return assign()
        return self.table.assign_once(entry.dn.normalized, assign)

    def _route_descendant(self, entry: Entry) -> Routing:
        if self.table is None:
            msg = (
                f"Entry {entry.dn} is more than one level below split base DN "
                f"{self.split_base_dn}, which is not allowed when the DIT is "
                "assumed to be flat."
            )
            return Routing([ERRORS_SINK], error=msg, orphan=True)
        partition = self.table.get(entry.dn.normalized[1:])
        if partition is None:
            msg = (
                f"Unable to determine which set should contain entry {entry.dn} "
                f"because its parent entry {entry.dn.parent} was not found "
                "earlier in the input."
            )
            return Routing([ERRORS_SINK], error=msg, orphan=True)
        self.table.assign_once(entry.dn.normalized, lambda: partition)
        self.strategy.record_assignment(partition)
        return Routing([set_sink_name(partition)])

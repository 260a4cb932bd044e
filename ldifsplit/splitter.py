"""
Running a split.

:py:class:`LDIFSplitter` wires the reader, classifier, strategy, consistency
enforcer and writers together.  Classifying records and hashing branch entries
needs no shared state, so with more than one thread that work is fanned out to
a :py:class:`~concurrent.futures.ThreadPoolExecutor`.  Everything that touches
shared state (the ancestry table, the fewest-entries counters, the output
files) happens on the calling thread, which commits records strictly in
input order.  That keeps every parent ahead of its children in each file no
matter how many workers there are.
"""

import logging
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from .classifier import Category, classify
from .conf import (
    SplitConfiguration,
    StrategyKind,
    get_in_flight_per_thread,
    get_progress_interval,
)
from .consistency import HierarchyConsistencyEnforcer
from .reader import Entry, LDIFSourceReader, ParseError
from .results import SplitIOError, SplitResult
from .strategies import SplitStrategy
from .typing import PartitionIndex
from .writers import OutputWriterSet

logger = logging.getLogger(__name__)

#: Categories of entries at or below the split base DN
IN_SCOPE = (Category.BASE, Category.BRANCH, Category.DESCENDANT)


class PreparedRecord:
    """A record after the thread-safe part of its processing."""

    __slots__ = ("category", "partition", "record")

    def __init__(
        self,
        record: Entry | ParseError,
        category: Category,
        partition: PartitionIndex | None,
    ) -> None:
        self.record = record
        self.category = category
        self.partition = partition


class LDIFSplitter:
    """
    Split the configured sources into sets.

    Example::

        config = SplitConfiguration(
            "ou=People,dc=example,dc=com", 4, ["people.ldif"]
        )
        result = LDIFSplitter(config).run()
        for line in result.report():
            print(line)

    Args:
        config: A validated split configuration.

    """

    def __init__(self, config: SplitConfiguration) -> None:
        self.config = config
        self.strategy = SplitStrategy.from_configuration(config)
        self.enforcer = HierarchyConsistencyEnforcer(config, self.strategy)
        self.result = SplitResult()
        self.writers = OutputWriterSet(
            config.target_base_path,
            self.result,
            compress=config.compress_target,
            passphrase=config.encryption_passphrase if config.encrypt_target else None,
        )
        self.progress_interval = get_progress_interval()
        #: Outside entries bound for every set, waiting for the split base entry
        self.held: list[tuple[Entry, list[str]]] = []
        self.in_scope_seen = False

    def reader(self) -> LDIFSourceReader:
        return LDIFSourceReader(
            self.config.sources,
            self.config.schema,
            passphrase=self.config.encryption_passphrase,
            compressed=self.config.source_compressed,
        )

    def run(self) -> SplitResult:
        """
        Read every source and write every set.

        I/O errors stop the run: the files written so far are closed and left
        in place, and the result carries the error.

        Returns:
            The counts and final status of the run.

        """
        logger.info(
            "ldifsplit.split.start strategy=%s sets=%d threads=%d base=%s",
            self.config.strategy.value,
            self.config.num_sets,
            self.config.num_threads,
            self.config.split_base_dn,
        )
        try:
            if self.config.strategy == StrategyKind.FILTER:
                self.strategy.scan_for_filter_matches(
                    self.reader(), self.config.split_base_dn
                )
            if self.config.num_threads == 1:
                self._run_serial()
            else:
                self._run_parallel()
            self.release_held()
        except SplitIOError as e:
            logger.error("ldifsplit.split.failed error=%s", e)  # noqa: TRY400
            self.result.record_fatal(str(e))
        finally:
            try:
                self.writers.close()
            except SplitIOError as e:
                self.result.record_fatal(str(e))
        logger.info(
            "ldifsplit.split.complete entries=%d parse_errors=%d orphans=%d result=%s",
            self.result.entries_read,
            self.result.parse_errors,
            self.result.orphan_errors,
            self.result.result_code.name,
        )
        return self.result

    def _run_serial(self) -> None:
        for record in self.reader():
            self.commit(self.prepare(record))

    def _run_parallel(self) -> None:
        window = self.config.num_threads * get_in_flight_per_thread()
        pending: deque[Future[PreparedRecord]] = deque()
        with ThreadPoolExecutor(
            max_workers=self.config.num_threads, thread_name_prefix="ldifsplit"
        ) as pool:
            for record in self.reader():
                pending.append(pool.submit(self.prepare, record))
                while pending and (len(pending) >= window or pending[0].done()):
                    self.commit(pending.popleft().result())
            while pending:
                self.commit(pending.popleft().result())

    def prepare(self, record: Entry | ParseError) -> PreparedRecord:
        """
        Classify ``record`` and, for branch entries under a stateless strategy,
        compute their set.  Safe to run on any thread.
        """
        category = classify(record, self.config.split_base_dn)
        partition = None
        if category == Category.BRANCH and self.strategy.is_stateless:
            partition = self.strategy.assign(record)  # type: ignore[arg-type]
        return PreparedRecord(record, category, partition)

    def commit(self, prepared: PreparedRecord) -> None:
        """
        Route a prepared record and write it.  Must only be called from the
        thread running :py:meth:`run`, in input order.

        Outside entries bound for every set that come before anything at or
        below the split base DN are held back, so each set starts with the
        split base entry when the input has one.
        """
        count = self.result.record_read()
        if count % self.progress_interval == 0:
            logger.info("ldifsplit.split.progress entries=%d", count)
        record = prepared.record
        routing = self.enforcer.route(record, prepared.category, prepared.partition)
        if routing.error is not None:
            if routing.orphan:
                self.result.record_orphan()
            else:
                self.result.record_parse_error()
            logger.warning(
                "ldifsplit.split.rejected source=%s line=%d error=%s",
                record.source,
                record.line_number,
                routing.error,
            )
        if not routing.sinks:
            self.result.record_excluded()
            return
        if prepared.category in IN_SCOPE and not self.in_scope_seen:
            self.in_scope_seen = True
            if prepared.category == Category.BASE:
                self.writers.write(record, routing.sinks, error=routing.error)
                self.release_held()
                return
            self.release_held()
        if (
            prepared.category == Category.OUTSIDE
            and not self.in_scope_seen
            and self.config.outside_mode.to_all_sets
        ):
            self.held.append((record, routing.sinks))  # type: ignore[arg-type]
            return
        self.writers.write(record, routing.sinks, error=routing.error)

    def release_held(self) -> None:
        """
        Write the outside entries held back until the split base entry, or
        the first entry below it, has been written.
        """
        held, self.held = self.held, []
        for record, sinks in held:
            self.writers.write(record, sinks)


def split_ldif(*args: Any, **kwargs: Any) -> SplitResult:
    """
    Build a :py:class:`~ldifsplit.conf.SplitConfiguration` from the arguments
    and run it.

    Raises:
        SplitConfigurationError: the arguments are invalid.  Nothing has been
            read or written.

    """
    return LDIFSplitter(SplitConfiguration(*args, **kwargs)).run()

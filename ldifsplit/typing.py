"""
LDIF split type definitions.

This module provides type aliases for the LDIF data structures passed between
the reader, the strategies and the writers, using Python 3.10+ type hinting
conventions.
"""

#: An attribute map as produced by :py:class:`ldif.LDIFRecordList`
EntryAttributes = dict[str, list[bytes]]
#: One RDN component: (lowercased attribute type, normalized value)
RDNComponent = tuple[str, str]
NormalizedRDN = tuple[RDNComponent, ...]
NormalizedDN = tuple[NormalizedRDN, ...]
PartitionIndex = int

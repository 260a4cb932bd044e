"""
Classifying entries by where they sit relative to the split base DN.
"""

from enum import Enum

from .dn import DN
from .reader import Entry, ParseError


class Category(Enum):
    """Where a record sits relative to the split base DN."""

    #: Not at or below the split base DN
    OUTSIDE = "outside"
    #: The split base entry itself
    BASE = "base"
    #: Exactly one level below the split base: the unit of assignment
    BRANCH = "branch"
    #: Two or more levels below the split base
    DESCENDANT = "descendant"
    #: A record that could not be parsed
    MALFORMED = "malformed"


def classify_dn(dn: DN, split_base_dn: DN) -> Category:
    depth = dn.depth_below(split_base_dn)
    if depth is None:
        return Category.OUTSIDE
    if depth == 0:
        return Category.BASE
    if depth == 1:
        return Category.BRANCH
    return Category.DESCENDANT


def classify(record: Entry | ParseError, split_base_dn: DN) -> Category:
    """
    Categorize a record read from the sources.

    This is a pure function of its arguments and is safe to call from any
    number of threads at once.
    """
    if isinstance(record, ParseError):
        return Category.MALFORMED
    return classify_dn(record.dn, split_base_dn)

"""
Distinguished names.

:py:class:`DN` wraps :py:func:`ldap.dn.str2dn` with the comparisons the
splitter needs: schema-aware equality, parent lookup and depth
below another DN.
"""

from typing import TYPE_CHECKING, Optional

import ldap.dn

from .typing import NormalizedDN, NormalizedRDN

if TYPE_CHECKING:
    from .schema import Schema


class DN:
    """
    An immutable, parsed distinguished name.

    Two :py:class:`DN` objects are equal when their RDNs are equal under the
    equality matching rules of their attribute types, so
    ``uid=Jdoe,ou=People,dc=Example,dc=com`` equals
    ``UID=jdoe,ou=people,dc=example,dc=com``.

    Args:
        dn: The string representation of the DN.
        schema: The schema used to normalize RDN values.

    Raises:
        ldap.DECODING_ERROR: ``dn`` is not a valid DN.

    """

    __slots__ = ("_hash", "normalized", "rdns", "schema", "value")

    def __init__(self, dn: str, schema: "Schema") -> None:
        self.value = dn
        self.schema = schema
        #: The RDNs as parsed, leaf first: a tuple of (attribute, value) pairs
        #: per RDN
        self.rdns: tuple[tuple[tuple[str, str], ...], ...] = tuple(
            tuple((attr, value) for attr, value, _ in rdn)
            for rdn in ldap.dn.str2dn(dn)
        )
        self.normalized: NormalizedDN = tuple(
            self._normalize_rdn(rdn) for rdn in self.rdns
        )
        self._hash = hash(self.normalized)

    def _normalize_rdn(self, rdn: tuple[tuple[str, str], ...]) -> NormalizedRDN:
        return tuple(
            sorted(
                (attr.lower(), self.schema.normalize(attr, value))
                for attr, value in rdn
            )
        )

    @classmethod
    def _from_rdns(
        cls, rdns: tuple[tuple[tuple[str, str], ...], ...], schema: "Schema"
    ) -> "DN":
        dn = cls.__new__(cls)
        dn.rdns = rdns
        dn.schema = schema
        dn.value = ldap.dn.dn2str(
            [[(attr, value, 1) for attr, value in rdn] for rdn in rdns]
        )
        dn.normalized = tuple(dn._normalize_rdn(rdn) for rdn in rdns)
        dn._hash = hash(dn.normalized)
        return dn

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DN):
            return NotImplemented
        return self.normalized == other.normalized

    def __hash__(self) -> int:
        return self._hash

    def __len__(self) -> int:
        return len(self.rdns)

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"DN({self.value!r})"

    @property
    def normalized_string(self) -> str:
        """
        The normalized DN as a string, suitable as a dictionary key or hash
        input.
        """
        return ldap.dn.dn2str(
            [[(attr, value, 1) for attr, value in rdn] for rdn in self.normalized]
        )

    @property
    def normalized_rdn(self) -> str:
        """
        The normalized leaf RDN as a string, e.g. ``uid=jdoe``.  Empty for the
        null DN.
        """
        if not self.normalized:
            return ""
        return ldap.dn.dn2str([[(attr, value, 1) for attr, value in self.normalized[0]]])

    @property
    def parent(self) -> Optional["DN"]:
        """The DN one level up, or ``None`` for the null DN."""
        if not self.rdns:
            return None
        return DN._from_rdns(self.rdns[1:], self.schema)

    def depth_below(self, base: "DN") -> int | None:
        """
        Return how many levels below ``base`` this DN is: ``0`` if they are
        equal, ``1`` for an immediate child and so on.

        Returns:
            The depth, or ``None`` when this DN is not at or below ``base``.

        """
        depth = len(self.normalized) - len(base.normalized)
        if depth < 0 or self.normalized[depth:] != base.normalized:
            return None
        return depth

    def is_descendant_of(self, base: "DN", allow_equal: bool = False) -> bool:
        depth = self.depth_below(base)
        if depth is None:
            return False
        return allow_equal or depth > 0

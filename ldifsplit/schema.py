"""
Schema-aware value normalization.

This module provides the :py:class:`Schema` class, which knows which equality
matching rule applies to an attribute and normalizes attribute values (and
therefore RDNs) according to that rule.  Attribute type definitions are read
from LDIF schema files with :py:mod:`ldap.schema`; attributes that are not
defined anywhere compare with ``caseIgnoreMatch``.
"""

import logging
import re
from collections.abc import Callable
from pathlib import Path

import ldap
import ldif
from ldap.schema import SubSchema
from ldap.schema.models import AttributeType

from .results import ResultCode, SplitConfigurationError

logger = logging.getLogger(__name__)

#: Matching rule used for attributes the schema knows nothing about
DEFAULT_EQUALITY_RULE = "caseIgnoreMatch"

#: Equality rules of well known attributes, used when no schema was loaded or
#: the loaded schema does not define the attribute.  Keys are lowercased.
BUILTIN_EQUALITY_RULES: dict[str, str] = {
    "objectclass": "objectIdentifierMatch",
    "userpassword": "octetStringMatch",
    "telephonenumber": "telephoneNumberMatch",
    "facsimiletelephonenumber": "telephoneNumberMatch",
    "homephone": "telephoneNumberMatch",
    "mobile": "telephoneNumberMatch",
    "pager": "telephoneNumberMatch",
    "uidnumber": "integerMatch",
    "gidnumber": "integerMatch",
    "employeenumber": "caseIgnoreMatch",
    "mail": "caseIgnoreIA5Match",
    "member": "distinguishedNameMatch",
    "uniquemember": "uniqueMemberMatch",
    "manager": "distinguishedNameMatch",
    "secretary": "distinguishedNameMatch",
    "seealso": "distinguishedNameMatch",
    "owner": "distinguishedNameMatch",
    "roleoccupant": "distinguishedNameMatch",
    "aliasedobjectname": "distinguishedNameMatch",
    "creatorsname": "distinguishedNameMatch",
    "modifiersname": "distinguishedNameMatch",
    "createtimestamp": "generalizedTimeMatch",
    "modifytimestamp": "generalizedTimeMatch",
    "entryuuid": "uuidMatch",
}

#: Schema attribute names we read attribute type definitions from
_ATTRIBUTE_TYPE_KEYS = ("attributetypes", "olcattributetypes")
#: cn=config prefixes values with an ordering index: ``{12}( 2.5.4.3 ...``
_X_ORDERED = re.compile(r"^\{\d+\}")
_TELEPHONE_IGNORED = re.compile(r"[\s\-]")


def _collapse_spaces(value: str) -> str:
    return " ".join(value.split())


def _case_ignore(value: str) -> str:
    return _collapse_spaces(value).lower()


def _integer(value: str) -> str:
    try:
        return str(int(value.strip()))
    except ValueError:
        return _case_ignore(value)


_NORMALIZERS: dict[str, Callable[[str], str]] = {
    "caseignorematch": _case_ignore,
    "caseignoreia5match": _case_ignore,
    "caseignorelistmatch": _case_ignore,
    "caseexactmatch": _collapse_spaces,
    "caseexactia5match": _collapse_spaces,
    "numericstringmatch": lambda v: v.replace(" ", ""),
    "telephonenumbermatch": lambda v: _TELEPHONE_IGNORED.sub("", v).lower(),
    "integermatch": _integer,
    "booleanmatch": lambda v: v.strip().upper(),
    "objectidentifiermatch": lambda v: v.strip().lower(),
    "generalizedtimematch": lambda v: v.strip().upper(),
    "uuidmatch": lambda v: v.strip().lower(),
    "octetstringmatch": lambda v: v,
    "bitstringmatch": lambda v: v.strip(),
}

_DN_RULES = {"distinguishednamematch", "uniquemembermatch"}


def _schema_files_in(path: Path) -> list[Path]:
    """
    Return ``path`` itself if it is a file, otherwise the ``*.ldif`` files in
    it, sorted by name.
    """
    if path.is_file():
        return [path]
    if not path.is_dir():
        return []
    return sorted(
        (p for p in path.iterdir() if p.is_file() and p.name.lower().endswith(".ldif")),
        key=lambda p: p.name,
    )


class Schema:
    """
    Normalizes attribute values by their equality matching rule.

    Keyword Args:
        subschema: The attribute type definitions to consult before the
            built-in table.  ``None`` means "use the built-in table only".

    """

    def __init__(self, subschema: SubSchema | None = None) -> None:
        self.subschema = subschema
        self._rule_cache: dict[str, str] = {}

    @classmethod
    def from_paths(cls, paths: list[Path]) -> "Schema":
        """
        Load attribute type definitions from LDIF schema files.

        Directories contribute every ``*.ldif`` file they contain, in name
        order.

        Args:
            paths: Schema files and/or schema directories.

        Raises:
            SplitConfigurationError: no schema file was found
                (``PARAM_ERROR``), or the files could not be read or parsed
                (``LOCAL_ERROR``).

        Returns:
            The loaded schema.

        """
        files: list[Path] = []
        for path in paths:
            files.extend(_schema_files_in(path))
        if not files:
            names = ", ".join(str(p) for p in paths)
            msg = f"No schema files were found in {names}."
            raise SplitConfigurationError(msg)
        definitions: list[str] = []
        for path in files:
            try:
                with path.open("rb") as fh:
                    parser = ldif.LDIFRecordList(fh)
                    parser.parse()
            except (OSError, ValueError) as e:
                msg = f"Unable to load schema file {path}: {e}"
                raise SplitConfigurationError(msg, ResultCode.LOCAL_ERROR) from e
            for _, attrs in parser.all_records:
                for key, values in attrs.items():
                    if key.lower() in _ATTRIBUTE_TYPE_KEYS:
                        definitions.extend(
                            _X_ORDERED.sub("", v.decode("utf-8")) for v in values
                        )
        try:
            subschema = SubSchema({"attributeTypes": definitions}, check_uniqueness=0)
        except (ValueError, KeyError, IndexError) as e:
            msg = f"Unable to parse the attribute types in the schema: {e}"
            raise SplitConfigurationError(msg, ResultCode.LOCAL_ERROR) from e
        logger.debug(
            "ldifsplit.schema.loaded files=%d attribute_types=%d",
            len(files),
            len(definitions),
        )
        return cls(subschema)

    @classmethod
    def from_instance_root(cls, instance_root: Path) -> "Schema | None":
        """
        Load the schema of a server instance from ``config/schema`` under
        ``instance_root``.

        Problems here are not fatal: the built-in matching rules are a usable
        substitute, so failures are logged and ``None`` is returned.
        """
        schema_dir = instance_root / "config" / "schema"
        if not _schema_files_in(schema_dir):
            return None
        try:
            return cls.from_paths([schema_dir])
        except SplitConfigurationError as e:
            logger.warning(
                "ldifsplit.schema.instance_root.failed path=%s error=%s", schema_dir, e
            )
            return None

    def equality_rule(self, attribute: str) -> str:
        """
        Return the name of the equality matching rule for ``attribute``.

        Args:
            attribute: An attribute type name or OID, optionally with options
                (``cn;lang-en``).

        """
        name = attribute.split(";", 1)[0].strip().lower()
        rule = self._rule_cache.get(name)
        if rule is not None:
            return rule
        rule = None
        if self.subschema is not None:
            try:
                rule = self.subschema.get_inheritedattr(AttributeType, name, "equality")
            except KeyError:
                rule = None
        if not rule:
            rule = BUILTIN_EQUALITY_RULES.get(name, DEFAULT_EQUALITY_RULE)
        self._rule_cache[name] = rule
        return rule

    def normalize(self, attribute: str, value: str) -> str:
        """
        Normalize a string value of ``attribute`` so that two values the
        matching rule considers equal normalize to the same string.
        """
        rule = self.equality_rule(attribute).lower()
        if rule in _DN_RULES:
            return self._normalize_dn_value(value)
        return _NORMALIZERS.get(rule, _case_ignore)(value)

    def normalize_bytes(self, attribute: str, value: bytes) -> bytes:
        """
        Normalize a raw attribute value.  Values that are not valid UTF-8 are
        compared byte for byte.
        """
        try:
            text = value.decode("utf-8")
        except UnicodeDecodeError:
            return value
        return self.normalize(attribute, text).encode("utf-8")

    def _normalize_dn_value(self, value: str) -> str:
        from .dn import DN

        try:
            return DN(value, self).normalized_string
        except ldap.DECODING_ERROR:  # type: ignore[attr-defined]
            return _case_ignore(value)

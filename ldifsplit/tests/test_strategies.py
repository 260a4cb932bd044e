"""
Tests for the partition assignment strategies.
"""

import unittest
from unittest.mock import Mock

from ldifsplit.conf import StrategyKind
from ldifsplit.dn import DN
from ldifsplit.reader import LDIFSourceReader
from ldifsplit.schema import Schema
from ldifsplit.strategies import SplitStrategy, filter_data, hash_to_partition


BASE = "ou=People,dc=example,dc=com"


def make_entry(text, schema=None):
    schema = schema or Schema()
    lines = [line + "\n" for line in text.strip().splitlines()]
    return LDIFSourceReader([], schema).parse_record(lines, "test.ldif", 1)


def person(uid, *extra):
    return make_entry("\n".join([f"dn: uid={uid},{BASE}", f"uid: {uid}", *extra]))


class TestHashToPartition(unittest.TestCase):
    """Test the hash function shared by the hash strategies."""

    def test_result_is_in_range(self):
        for num_sets in (2, 3, 7, 64):
            for i in range(200):
                partition = hash_to_partition(f"uid=user.{i}".encode(), num_sets)
                self.assertGreaterEqual(partition, 0)
                self.assertLess(partition, num_sets)

    def test_is_deterministic(self):
        self.assertEqual(
            hash_to_partition(b"uid=user.1", 5), hash_to_partition(b"uid=user.1", 5)
        )

    def test_spreads_values(self):
        partitions = {hash_to_partition(f"uid=user.{i}".encode(), 4) for i in range(200)}
        self.assertEqual(partitions, {0, 1, 2, 3})


class TestHashOnRDN(unittest.TestCase):
    """Test the hash-on-rdn strategy."""

    def setUp(self):
        self.strategy = SplitStrategy(StrategyKind.HASH_ON_RDN, 4, Schema())

    def test_uses_normalized_rdn(self):
        self.assertEqual(
            self.strategy.assign(person("jdoe")),
            hash_to_partition(b"uid=jdoe", 4),
        )

    def test_rdn_case_does_not_matter(self):
        upper = make_entry(f"dn: UID=JDoe,{BASE}\nuid: JDoe")
        self.assertEqual(self.strategy.assign(upper), self.strategy.assign(person("jdoe")))

    def test_is_stateless(self):
        self.assertTrue(self.strategy.is_stateless)


class TestHashOnAttribute(unittest.TestCase):
    """Test the hash-on-attribute strategy."""

    def setUp(self):
        self.schema = Schema()
        self.rdn_strategy = SplitStrategy(StrategyKind.HASH_ON_RDN, 4, self.schema)

    def strategy(self, use_all_values=False):
        return SplitStrategy(
            StrategyKind.HASH_ON_ATTRIBUTE,
            4,
            self.schema,
            attribute="mail",
            use_all_values=use_all_values,
        )

    def test_hashes_first_value(self):
        entry = person("jdoe", "mail: JDoe@Example.com", "mail: other@example.com")
        self.assertEqual(
            self.strategy().assign(entry),
            hash_to_partition(b"jdoe@example.com", 4),
        )

    def test_same_value_same_set(self):
        first = person("jdoe", "mail: shared@example.com")
        second = person("jsmith", "mail: SHARED@example.com")
        strategy = self.strategy()
        self.assertEqual(strategy.assign(first), strategy.assign(second))

    def test_missing_attribute_falls_back_to_rdn(self):
        entry = person("jdoe")
        self.assertEqual(self.strategy().assign(entry), self.rdn_strategy.assign(entry))

    def test_all_values_ignores_value_order(self):
        first = person("jdoe", "mail: a@example.com", "mail: b@example.com")
        second = person("jsmith", "mail: B@example.com", "mail: a@example.com")
        strategy = self.strategy(use_all_values=True)
        self.assertEqual(strategy.assign(first), strategy.assign(second))
        self.assertEqual(
            strategy.assign(first),
            hash_to_partition(b"a@example.com\x00b@example.com", 4),
        )


class TestFewestEntries(unittest.TestCase):
    """Test the fewest-entries strategy."""

    def setUp(self):
        self.strategy = SplitStrategy(StrategyKind.FEWEST_ENTRIES, 3, Schema())

    def test_round_robins_when_balanced(self):
        assigned = [self.strategy.assign(person(f"user.{i}")) for i in range(7)]
        self.assertEqual(assigned, [0, 1, 2, 0, 1, 2, 0])
        self.assertEqual(self.strategy.counts, [3, 2, 2])

    def test_counts_recorded_assignments(self):
        self.strategy.record_assignment(0)
        self.strategy.record_assignment(0)
        self.strategy.record_assignment(1)
        self.assertEqual(self.strategy.assign(person("jdoe")), 2)
        self.assertEqual(self.strategy.assign(person("jsmith")), 1)

    def test_is_not_stateless(self):
        self.assertFalse(self.strategy.is_stateless)


class TestFilterStrategy(unittest.TestCase):
    """Test the filter strategy."""

    def setUp(self):
        self.schema = Schema()
        self.strategy = SplitStrategy(
            StrategyKind.FILTER,
            3,
            self.schema,
            filters=["(departmentNumber=1)", "(departmentNumber=2)"],
        )

    def test_first_matching_filter(self):
        self.assertEqual(self.strategy.assign(person("a", "departmentNumber: 1")), 0)
        self.assertEqual(self.strategy.assign(person("b", "departmentNumber: 2")), 1)
        self.assertTrue(self.strategy.filter_matched)

    def test_filter_attribute_name_case(self):
        self.assertEqual(self.strategy.assign(person("a", "DEPARTMENTNUMBER: 2")), 1)

    def test_no_match_goes_to_last_set(self):
        self.assertEqual(self.strategy.assign(person("a", "departmentNumber: 3")), 2)
        self.assertEqual(self.strategy.assign(person("b")), 2)

    def test_unevaluable_filter_falls_back_to_rdn(self):
        self.strategy.filters = [Mock(match=Mock(side_effect=ValueError("bad")))]
        entry = person("jdoe", "departmentNumber: 1")
        self.assertEqual(
            self.strategy.assign(entry), hash_to_partition(b"uid=jdoe", 3)
        )

    def test_extensible_match_falls_back_to_rdn(self):
        for extensible in ("(cn:dn:=jdoe)", "(uid:caseExactMatch:=jdoe)"):
            with self.assertLogs("ldifsplit.strategies", level="WARNING"):
                strategy = SplitStrategy(
                    StrategyKind.FILTER,
                    3,
                    self.schema,
                    filters=["(departmentNumber=1)", extensible],
                )
            self.assertEqual(strategy.unevaluable, {1})
            entry = person("jdoe", "cn: jdoe")
            self.assertEqual(strategy.assign(entry), hash_to_partition(b"uid=jdoe", 3))
            # Filters ahead of the extensible match are still honored
            self.assertEqual(strategy.assign(person("a", "departmentNumber: 1")), 0)

    def test_equality_value_with_colon_is_evaluable(self):
        strategy = SplitStrategy(
            StrategyKind.FILTER,
            3,
            self.schema,
            filters=["(description=a:=b)", "(departmentNumber=2)"],
        )
        self.assertEqual(strategy.unevaluable, set())
        self.assertEqual(strategy.assign(person("a", "description: a:=b")), 0)

    def test_scan_finds_match(self):
        base = DN(BASE, self.schema)
        records = [
            make_entry(f"dn: {BASE}\nou: People"),
            person("a", "departmentNumber: 9"),
            person("b", "departmentNumber: 2"),
        ]
        self.assertTrue(self.strategy.scan_for_filter_matches(records, base))
        self.assertFalse(self.strategy.fallback_to_rdn)

    def test_scan_without_match_falls_back_to_rdn(self):
        base = DN(BASE, self.schema)
        records = [
            make_entry(f"dn: {BASE}\nou: People"),
            person("a", "departmentNumber: 9"),
            # Descendants do not count, only branch entries do
            make_entry(f"dn: cn=x,uid=a,{BASE}\ncn: x\ndepartmentNumber: 1"),
        ]
        self.assertFalse(self.strategy.scan_for_filter_matches(records, base))
        self.assertTrue(self.strategy.fallback_to_rdn)
        entry = person("jdoe", "departmentNumber: 1")
        self.assertEqual(
            self.strategy.assign(entry), hash_to_partition(b"uid=jdoe", 3)
        )


class TestFilterData(unittest.TestCase):
    """Test building the data filters are evaluated against."""

    def test_single_and_multiple_values(self):
        data = filter_data(person("jdoe", "mail: a@example.com", "mail: b@example.com"))
        self.assertEqual(data["uid"], "jdoe")
        self.assertEqual(data["MAIL"], ["a@example.com", "b@example.com"])
        self.assertIn("Mail", data)
        self.assertIsNone(data.get("cn"))

#!/usr/bin/env python
"""
test_matching.py - Rolling Hash, Source Index and Matcher Tests
===============================================================

Covers the pieces that drive delta creation:
1. RollingHash sliding equals rehashing from scratch
2. SourceIndex chains (newest block first, full blocks only)
3. Matcher extension, cost test and tie-break
"""

import random
import unittest

from fossil_delta import (
    HASH_SIZE,
    SEARCH_LIMIT,
    DeltaStats,
    Match,
    Matcher,
    RollingHash,
    SourceIndex,
    ValidationError,
)


class TestRollingHash(unittest.TestCase):

    def test_advance_matches_init(self):
        """Sliding one byte at a time gives the same value as a fresh init"""
        rng = random.Random(7)
        data = bytes(rng.randint(0, 255) for _ in range(500))
        rolling = RollingHash()
        rolling.init(data, 0)
        for offset in range(1, len(data) - HASH_SIZE + 1):
            rolling.advance(data[offset + HASH_SIZE - 1])
            self.assertEqual(rolling.value(), RollingHash.of(data, offset), offset)

    def test_value_is_32_bit(self):
        data = b'\xff' * 64
        rolling = RollingHash()
        rolling.init(data, 0)
        for c in data[HASH_SIZE:]:
            rolling.advance(c)
            self.assertTrue(0 <= rolling.value() < (1 << 32))

    def test_known_value(self):
        # a = 16 * 1, b = (16 + 15 + ... + 1) * 1
        self.assertEqual(RollingHash.of(b'\x01' * HASH_SIZE), 16 | (136 << 16))

    def test_reinit_after_jump(self):
        data = bytes(range(64))
        rolling = RollingHash()
        rolling.init(data, 3)
        rolling.init(data, 40)
        self.assertEqual(rolling.value(), RollingHash.of(data, 40))

    def test_order_sensitive(self):
        self.assertNotEqual(
            RollingHash.of(b'ABCDEFGHIJKLMNOP'),
            RollingHash.of(b'BACDEFGHIJKLMNOP'),
        )


class TestSourceIndex(unittest.TestCase):

    def test_block_count(self):
        self.assertEqual(len(SourceIndex(b'x' * 16)), 1)
        self.assertEqual(len(SourceIndex(b'x' * 47)), 2)
        self.assertEqual(len(SourceIndex(b'x' * 48)), 3)

    def test_too_small_source(self):
        with self.assertRaises(ValidationError):
            SourceIndex(b'x' * (HASH_SIZE - 1))

    def test_chain_newest_first(self):
        """Identical blocks share a bucket and chain in reverse insertion order"""
        source = b'ABCDEFGHABCDEFGH' * 3
        index = SourceIndex(source)
        chain = list(index.chain(RollingHash.of(source, 0)))
        self.assertEqual(chain, [2, 1, 0])
        self.assertEqual(index.collide[0], -1)

    def test_last_full_block_indexed(self):
        """A source that is an exact multiple of HASH_SIZE indexes its last block"""
        source = bytes(range(32))
        index = SourceIndex(source)
        self.assertIn(1, list(index.chain(RollingHash.of(source, 16))))

    def test_partial_tail_ignored(self):
        source = bytes(range(16)) + b'tail'
        index = SourceIndex(source)
        self.assertEqual(len(index), 1)
        self.assertEqual(list(index.chain(RollingHash.of(source, 0))), [0])

    def test_every_block_reachable(self):
        rng = random.Random(3)
        source = bytes(rng.randint(0, 255) for _ in range(16 * 40))
        index = SourceIndex(source)
        for block in range(len(index)):
            self.assertIn(block, list(index.chain(RollingHash.of(source, block * HASH_SIZE))))


def _probe(source, target, base, i, stats=None):
    index = SourceIndex(source)
    matcher = Matcher(source, target, index, stats)
    return matcher.search(RollingHash.of(target, base + i), base, i)


class TestMatcher(unittest.TestCase):

    # With a 17..31 byte source there is exactly one bucket, so every
    # window probes block 0 regardless of its hash.
    SMALL_SOURCE = b'0123456789abcdef!'

    def test_forward_match(self):
        target = b'0123456789abcdef' + b'zzzz'
        self.assertEqual(_probe(self.SMALL_SOURCE, target, 0, 0), Match(16, 0, 0))

    def test_match_exactly_at_cost_accepted(self):
        """Six bytes at offset 0 cost 1+1+1+3 = 6 to encode: accepted"""
        target = b'012345' + b'z' * 20
        self.assertEqual(_probe(self.SMALL_SOURCE, target, 0, 0), Match(6, 0, 0))

    def test_match_below_cost_rejected(self):
        stats = DeltaStats()
        target = b'01234' + b'z' * 21
        self.assertIsNone(_probe(self.SMALL_SOURCE, target, 0, 0, stats))
        self.assertEqual(stats.probes, 1)
        self.assertEqual(stats.rejected, 1)
        self.assertEqual(stats.hash_hits, 1)

    def test_backward_extension(self):
        """A match anchored at a block start grows back towards base"""
        source = b'abcdefghijklmnop' + b'QRSTUVWXYZ012345'
        target = b'~~klmnop' + b'QRSTUVWXYZ012345' + b'!!'
        match = _probe(source, target, 0, 8)
        self.assertEqual(match, Match(length=22, offset=10, literal_size=2))

    def test_backward_extension_stops_at_base(self):
        source = b'abcdefghijklmnop' + b'QRSTUVWXYZ012345'
        target = b'~~klmnop' + b'QRSTUVWXYZ012345' + b'!!'
        # base=5 leaves only three target bytes before the anchor.
        match = _probe(source, target, 5, 3)
        self.assertEqual(match, Match(length=19, offset=13, literal_size=0))

    def test_tie_goes_to_newest_block(self):
        source = b'ABCDEFGHABCDEFGH' * 2
        target = b'XYABCDEFGHABCDEFGHZZ'
        self.assertEqual(_probe(source, target, 0, 2), Match(16, 16, 2))

    def test_longer_candidate_wins(self):
        """An older block that extends further replaces the first candidate"""
        block = b'ABCDEFGHIJKLMNOP'
        source = block + b'tail-of-block-00' + block + b'different-tail-1'
        target = block + b'tail-of-block-00'
        self.assertEqual(_probe(source, target, 0, 0), Match(32, 0, 0))

    def test_search_follows_index_chain(self):
        """Every block in the chain is examined, newest first"""
        stats = DeltaStats()
        block = b'ABCDEFGHIJKLMNOP'
        source = block * 3
        match = _probe(source, block, 0, 0, stats)
        index = SourceIndex(source)
        self.assertEqual(stats.probes, len(list(index.chain(RollingHash.of(block)))))
        self.assertEqual(stats.probes, 3)
        self.assertEqual(stats.hash_hits, 1)
        self.assertEqual(match, Match(16, 32, 0))

    def test_probe_limit(self):
        """Only SEARCH_LIMIT chain entries are examined"""
        stats = DeltaStats()
        source = b'ABCDEFGHIJKLMNOP' * (SEARCH_LIMIT + 50)
        target = b'ABCDEFGHIJKLMNOP'
        match = _probe(source, target, 0, 0, stats)
        self.assertEqual(stats.probes, SEARCH_LIMIT)
        self.assertEqual(match.offset, (SEARCH_LIMIT + 49) * HASH_SIZE)


if __name__ == '__main__':
    unittest.main()

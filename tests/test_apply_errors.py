#!/usr/bin/env python
"""
test_apply_errors.py - Malformed Delta Handling
===============================================

Apply must reject corrupt or mismatched deltas with a typed error and
never hand back partial output.
"""

import unittest

from fossil_delta import (
    CMD_COPY,
    CMD_INSERT,
    BoundsError,
    Copy,
    DataIntegrityError,
    DeltaError,
    FormatError,
    Insert,
    ResourceLimitError,
    ValidationError,
    apply_delta,
    content_digest,
    create_delta,
    encode_commands,
    encode_varint,
    parse_delta,
)


SOURCE = b'0123456789abcdefghijklmnopqrstuvwxyz'


class TestBoundsErrors(unittest.TestCase):

    def test_copy_past_end(self):
        delta = encode_commands([Copy(5, len(SOURCE) - 2)])
        with self.assertRaises(BoundsError) as ctx:
            apply_delta(SOURCE, delta)
        self.assertEqual(ctx.exception.offset, len(SOURCE) - 2)
        self.assertEqual(ctx.exception.count, 5)
        self.assertEqual(ctx.exception.source_size, len(SOURCE))

    def test_copy_exactly_to_end_allowed(self):
        delta = encode_commands([Copy(6, len(SOURCE) - 6)])
        self.assertEqual(apply_delta(SOURCE, delta), b'uvwxyz')

    def test_copy_against_shorter_source(self):
        """A delta built for one source fails cleanly against a truncated one"""
        source = bytes(range(200))
        delta = create_delta(source, source[40:] + b'!')
        with self.assertRaises(BoundsError):
            apply_delta(source[:50], delta)

    def test_bounds_error_after_valid_commands(self):
        delta = encode_commands([Insert(b'ok'), Copy(3, 0), Copy(1, 10 ** 6)])
        with self.assertRaises(BoundsError):
            apply_delta(SOURCE, delta)


class TestFormatErrors(unittest.TestCase):

    def test_unknown_tag(self):
        for tag in (0x00, 0x41, 0xFF):
            with self.assertRaises(FormatError) as ctx:
                apply_delta(SOURCE, bytes((tag,)) + b'\x01\x02')
            self.assertEqual(ctx.exception.position, 0)

    def test_unknown_tag_mid_stream(self):
        delta = encode_commands([Insert(b'abc')]) + b'#'
        with self.assertRaises(FormatError) as ctx:
            apply_delta(SOURCE, delta)
        self.assertEqual(ctx.exception.position, 5)

    def test_insert_longer_than_delta(self):
        delta = bytes((CMD_INSERT,)) + encode_varint(10) + b'short'
        with self.assertRaises(FormatError):
            apply_delta(SOURCE, delta)

    def test_truncated_copy(self):
        full = encode_commands([Copy(300, 1)])
        for cut in range(1, len(full)):
            with self.assertRaises(FormatError):
                apply_delta(SOURCE * 10, full[:cut])

    def test_truncated_varint_in_insert(self):
        with self.assertRaises(FormatError):
            apply_delta(SOURCE, bytes((CMD_INSERT, 0xF9, 0x01)))

    def test_parse_delta_reports_same_errors(self):
        with self.assertRaises(FormatError):
            parse_delta(b'\x00')
        with self.assertRaises(FormatError):
            parse_delta(bytes((CMD_INSERT, 4)) + b'ab')
        with self.assertRaises(FormatError):
            parse_delta(bytes((CMD_COPY,)))

    def test_errors_share_base_class(self):
        with self.assertRaises(DeltaError):
            apply_delta(SOURCE, b'\x00')


class TestLimitsAndVerification(unittest.TestCase):

    def test_output_limit(self):
        delta = encode_commands([Copy(10, 0), Insert(b'x' * 10)])
        self.assertEqual(len(apply_delta(SOURCE, delta, limit=20)), 20)
        with self.assertRaises(ResourceLimitError):
            apply_delta(SOURCE, delta, limit=19)

    def test_negative_limit(self):
        with self.assertRaises(ValidationError):
            apply_delta(SOURCE, b'', limit=-1)

    def test_digest_verification(self):
        target = SOURCE[5:30] + b'tail'
        delta = create_delta(SOURCE, target)
        digest = content_digest(target)
        self.assertEqual(apply_delta(SOURCE, delta, expected_digest=digest), target)
        self.assertEqual(apply_delta(SOURCE, delta, expected_digest=digest.upper()), target)

    def test_digest_mismatch(self):
        delta = create_delta(SOURCE, b'some target data that differs')
        with self.assertRaises(DataIntegrityError):
            apply_delta(SOURCE, delta, expected_digest=content_digest(b'other'))

    def test_digest_is_xxh64_hex(self):
        digest = content_digest(b'hello')
        self.assertEqual(len(digest), 16)
        self.assertNotEqual(digest, content_digest(b'hello', seed=1))


class TestValidation(unittest.TestCase):

    def test_non_bytes_rejected(self):
        with self.assertRaises(ValidationError):
            create_delta('text', b'')
        with self.assertRaises(ValidationError):
            create_delta(b'', None)
        with self.assertRaises(ValidationError):
            apply_delta([1, 2, 3], b'')


if __name__ == '__main__':
    unittest.main()

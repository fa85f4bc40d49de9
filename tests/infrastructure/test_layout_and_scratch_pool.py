# tests/infrastructure/test_layout_and_scratch_pool.py

import unittest

import numpy as np

from src.tensornodes.domain._errors import (
    InvalidArgumentError,
    LogicError,
    ScratchLeaseError,
)
from src.tensornodes.domain._frame_range import FrameRange
from src.tensornodes.infrastructure._layout import MBLayout
from src.tensornodes.infrastructure._matrix import Matrix
from src.tensornodes.infrastructure._scratch_pool import ScratchPool


class TestMBLayout(unittest.TestCase):
    def test_column_ranges(self):
        layout = MBLayout(num_parallel_sequences=2, num_time_steps=3)
        self.assertEqual(layout.num_cols, 6)
        self.assertEqual(layout.column_range(FrameRange.all()), (0, 6))
        self.assertEqual(layout.column_range(FrameRange.at(1)), (2, 2))
        self.assertEqual(layout.column_range(FrameRange.at(2, sequence=1)), (5, 1))

    def test_out_of_range_frames(self):
        layout = MBLayout(2, 3)
        with self.assertRaises(LogicError):
            layout.column_range(FrameRange.at(3))
        with self.assertRaises(LogicError):
            layout.column_range(FrameRange.at(0, sequence=2))

    def test_invalid_construction(self):
        with self.assertRaises(InvalidArgumentError):
            MBLayout(0, 3)

    def test_sequence_end_marks_gaps(self):
        layout = MBLayout(2, 3)
        self.assertFalse(layout.has_gaps())
        layout.mark_sequence_end(1, 1)
        # column t * S + s: sequence 1 is padding at t = 1, 2
        np.testing.assert_array_equal(
            layout.column_mask(FrameRange.all()), [False, False, False, True, False, True]
        )
        self.assertFalse(layout.has_gaps(FrameRange.at(0)))
        self.assertTrue(layout.has_gaps(FrameRange.at(1)))
        self.assertTrue(layout.is_gap(1, 2))

    def test_mask_missing_columns_is_idempotent(self):
        layout = MBLayout(2, 2)
        layout.set_gap(0, 1)
        m = Matrix.from_numpy(np.arange(1.0, 9.0).reshape(2, 4))
        once = layout.mask_missing_columns(m, FrameRange.all()).to_numpy()
        twice = layout.mask_missing_columns(m, FrameRange.all()).to_numpy()
        np.testing.assert_array_equal(once, twice)
        np.testing.assert_array_equal(once[:, 2], [0.0, 0.0])
        with self.assertRaises(LogicError):
            layout.mask_missing_columns(m, FrameRange.at(0))

    def test_equality_by_value(self):
        a, b = MBLayout(2, 2), MBLayout(2, 2)
        self.assertEqual(a, b)
        b.set_gap(1, 1)
        self.assertNotEqual(a, b)
        self.assertNotEqual(a, MBLayout(1, 4))


class TestScratchPool(unittest.TestCase):
    def test_reuses_released_buffers(self):
        pool = ScratchPool()
        first = pool.request("a")
        pool.release(first, "a")
        second = pool.request("b")
        self.assertIs(first, second)
        self.assertEqual(pool.num_allocated, 1)

    def test_live_leases_are_distinct(self):
        pool = ScratchPool()
        leases = [pool.request(f"n{i}") for i in range(4)]
        for m in leases:
            m.resize(2, 2)
        for i, m in enumerate(leases):
            for other in leases[i + 1 :]:
                self.assertIsNot(m, other)
                self.assertFalse(m.shares_storage_with(other))
        self.assertEqual(pool.num_leased, 4)

    def test_dtype_specific_reuse(self):
        pool = ScratchPool()
        m32 = pool.request()
        pool.release(m32)
        m64 = pool.request(dtype=np.float64)
        self.assertIsNot(m32, m64)
        self.assertEqual(m64.dtype, np.float64)

    def test_double_release(self):
        pool = ScratchPool()
        m = pool.request("a")
        pool.release(m, "a")
        with self.assertRaises(ScratchLeaseError):
            pool.release(m, "a")

    def test_foreign_release(self):
        pool = ScratchPool()
        with self.assertRaises(ScratchLeaseError):
            pool.release(Matrix(1, 1))
        m = pool.request("a")
        with self.assertRaises(ScratchLeaseError):
            pool.release(m, "b")

    def test_outstanding_leases_reported(self):
        pool = ScratchPool()
        pool.request("cos")
        with self.assertRaises(ScratchLeaseError) as ctx:
            pool.assert_all_released()
        self.assertIn("cos", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()

# tests/infrastructure/test_matrix.py

import unittest

import numpy as np

from src.tensornodes.domain._errors import (
    DeviceMismatchError,
    DeviceNotSupportedError,
    InvalidArgumentError,
    LogicError,
)
from src.tensornodes.domain._matrix import IMatrix, StorageFormat
from src.tensornodes.domain.device._device import Device
from src.tensornodes.infrastructure._matrix import Matrix, resolve_element_type


def _m(arr, dtype=np.float64) -> Matrix:
    return Matrix.from_numpy(np.asarray(arr, dtype=dtype))


class TestMatrixConstruction(unittest.TestCase):
    def test_zero_filled_column_major(self):
        m = Matrix(2, 3)
        self.assertEqual(m.shape, (2, 3))
        self.assertEqual(m.dtype, np.float32)
        self.assertTrue(m.data.flags["F_CONTIGUOUS"])
        np.testing.assert_array_equal(m.to_numpy(), np.zeros((2, 3)))

    def test_from_numpy_promotions(self):
        self.assertEqual(Matrix.from_numpy(3.0).shape, (1, 1))
        self.assertEqual(Matrix.from_numpy([1, 2, 3]).shape, (3, 1))
        self.assertEqual(Matrix.from_numpy(np.ones((2, 2), dtype=np.int64)).dtype, np.float32)
        self.assertEqual(Matrix.from_numpy(np.ones((2, 2))).dtype, np.float64)
        with self.assertRaises(InvalidArgumentError):
            Matrix.from_numpy(np.ones((2, 2, 2)))

    def test_element_type_resolution(self):
        self.assertEqual(resolve_element_type("float64"), np.float64)
        for bad in (np.int32, np.float16, "complex64"):
            with self.subTest(dtype=bad):
                with self.assertRaises(InvalidArgumentError):
                    resolve_element_type(bad)

    def test_negative_shape_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            Matrix(-1, 2)

    def test_satisfies_protocol(self):
        self.assertIsInstance(Matrix(1, 1), IMatrix)


class TestMatrixViews(unittest.TestCase):
    def test_column_slice_is_a_view(self):
        m = _m(np.arange(12).reshape(3, 4))
        view = m.column_slice(1, 2)
        self.assertTrue(view.is_view)
        view.fill(-1.0)
        np.testing.assert_array_equal(m.to_numpy()[:, 1:3], -np.ones((3, 2)))
        np.testing.assert_array_equal(m.to_numpy()[:, 0], [0, 4, 8])

    def test_column_slice_bounds(self):
        with self.assertRaises(LogicError):
            Matrix(2, 3).column_slice(2, 2)

    def test_view_cannot_resize(self):
        view = Matrix(2, 4).column_slice(0, 2)
        view.resize(2, 2)  # same shape is fine
        with self.assertRaises(LogicError):
            view.resize(3, 2)
        with self.assertRaises(LogicError):
            view.copy_from_numpy(np.ones((2, 3)))

    def test_resize_reallocates_and_zero_fills(self):
        m = _m(np.ones((2, 2)))
        m.resize(3, 1)
        np.testing.assert_array_equal(m.to_numpy(), np.zeros((3, 1)))

    def test_reshaped_is_column_major(self):
        m = _m([[1, 3], [2, 4]])
        np.testing.assert_array_equal(m.reshaped(4, 1).to_numpy().ravel(), [1, 2, 3, 4])
        with self.assertRaises(LogicError):
            m.reshaped(3, 1)

    def test_sparse_column_slice_switches_to_dense(self):
        m = Matrix(2, 2, storage=StorageFormat.SPARSE_CSC)
        m.column_slice(0, 1)
        self.assertIs(m.storage, StorageFormat.DENSE)

    def test_masking_is_idempotent(self):
        m = _m(np.arange(8).reshape(2, 4))
        mask = np.array([False, True, False, True])
        once = m.mask_columns(mask).to_numpy()
        twice = m.mask_columns(mask).to_numpy()
        np.testing.assert_array_equal(once, twice)
        np.testing.assert_array_equal(once[:, [1, 3]], np.zeros((2, 2)))


class TestMatrixArithmetic(unittest.TestCase):
    def setUp(self):
        rng = np.random.default_rng(7)
        self.a = rng.standard_normal((3, 4))
        self.b = rng.standard_normal((3, 4))

    def test_sum_difference_product(self):
        a, b = _m(self.a), _m(self.b)
        np.testing.assert_allclose(Matrix(dtype=np.float64).assign_sum_of(a, b).to_numpy(), self.a + self.b)
        np.testing.assert_allclose(
            Matrix(dtype=np.float64).assign_difference_of(a, b).to_numpy(), self.a - self.b
        )
        np.testing.assert_allclose(
            Matrix(dtype=np.float64).assign_element_product_of(a, b).to_numpy(), self.a * self.b
        )
        with self.assertRaises(LogicError):
            Matrix(dtype=np.float64).assign_sum_of(a, _m(np.ones((4, 3))))

    def test_in_place_accumulation(self):
        m = _m(self.a)
        m += _m(self.b)
        m -= 1.0
        np.testing.assert_allclose(m.to_numpy(), self.a + self.b - 1.0)
        m.scale_and_add(-2.0, _m(self.b))
        np.testing.assert_allclose(m.to_numpy(), self.a - self.b - 1.0)

    def test_row_and_column_scaling(self):
        m = _m(self.a)
        m.row_element_multiply_with(_m([[1, 2, 3, 4]]))
        np.testing.assert_allclose(m.to_numpy(), self.a * np.array([1, 2, 3, 4]))
        m = _m(self.a)
        m.column_element_multiply_with(_m([[1], [2], [3]]))
        np.testing.assert_allclose(m.to_numpy(), self.a * np.array([[1], [2], [3]]))
        with self.assertRaises(LogicError):
            m.row_element_multiply_with(_m([[1, 2, 3]]))

    def test_inner_products_and_norms(self):
        a, b = _m(self.a), _m(self.b)
        col = Matrix(dtype=np.float64).assign_inner_product_of(a, b, col_wise=True)
        row = Matrix(dtype=np.float64).assign_inner_product_of(a, b, col_wise=False)
        np.testing.assert_allclose(col.to_numpy(), (self.a * self.b).sum(axis=0, keepdims=True))
        np.testing.assert_allclose(row.to_numpy(), (self.a * self.b).sum(axis=1, keepdims=True))
        norms = Matrix(dtype=np.float64).assign_vector_norm2_of(a)
        np.testing.assert_allclose(norms.to_numpy()[0], np.linalg.norm(self.a, axis=0))
        self.assertAlmostEqual(Matrix.inner_product_of_matrices(a, b), float((self.a * self.b).sum()))

    def test_multiply_and_weighted_add(self):
        a, b = _m(self.a), _m(self.b)
        c = _m(np.ones((4, 4)))
        Matrix.multiply_and_weighted_add(2.0, a, True, b, False, 0.5, c)
        np.testing.assert_allclose(c.to_numpy(), 2.0 * self.a.T @ self.b + 0.5)
        with self.assertRaises(LogicError):
            Matrix.multiply_and_add(a, False, b, False, c)

    def test_khatri_rao_row_ordering(self):
        a = _m([[1, 2], [3, 4]])
        b = _m([[5, 6], [7, 8], [9, 10]])
        kr = Matrix(dtype=np.float64).assign_khatri_rao_product_of(a, b).to_numpy()
        self.assertEqual(kr.shape, (6, 2))
        for k in range(2):
            expected = np.kron(self._col(b, k), self._col(a, k))
            np.testing.assert_allclose(kr[:, k], expected)

    @staticmethod
    def _col(m: Matrix, k: int) -> np.ndarray:
        return m.to_numpy()[:, k]

    def test_column_reshape_product(self):
        rng = np.random.default_rng(3)
        g = rng.standard_normal((6, 2))
        a = rng.standard_normal((2, 2))
        b = rng.standard_normal((3, 2))
        da = Matrix(2, 2, dtype=np.float64)
        da.add_column_reshape_product_of(_m(g), _m(b), transpose_a_column=False)
        db = Matrix(3, 2, dtype=np.float64)
        db.add_column_reshape_product_of(_m(g), _m(a), transpose_a_column=True)
        for k in range(2):
            blk = g[:, k].reshape((2, 3), order="F")
            np.testing.assert_allclose(da.to_numpy()[:, k], blk @ b[:, k])
            np.testing.assert_allclose(db.to_numpy()[:, k], blk.T @ a[:, k])

    def test_diagonal_helpers(self):
        x = _m(np.arange(6).reshape(2, 3))
        d = Matrix(dtype=np.float64).assign_diagonal_of(x)
        np.testing.assert_array_equal(d.to_numpy(), [[0, 4, 2]])
        acc = Matrix(2, 3, dtype=np.float64)
        acc.add_diagonal_values(_m([[1, 2, 3]]))
        np.testing.assert_array_equal(acc.to_numpy(), [[1, 0, 3], [0, 2, 0]])

    def test_strided_gather_and_scatter(self):
        a = _m(np.arange(12).reshape(2, 6))
        g = Matrix(dtype=np.float64).assign_column_stride_of(a, 1, 3)
        np.testing.assert_array_equal(g.to_numpy(), [[1, 4], [7, 10]])
        acc = Matrix(2, 6, dtype=np.float64)
        acc.add_to_column_stride(g, 1, 3)
        np.testing.assert_array_equal(acc.to_numpy()[:, [1, 4]], [[1, 4], [7, 10]])
        r = Matrix(dtype=np.float64).assign_row_stride_of(a.reshaped(6, 2), 0, 2)
        self.assertEqual(r.shape, (3, 2))

    def test_shifted_helpers(self):
        a = _m([[1.0, 2.0, 3.0]])
        b = _m([[10.0, 20.0, 30.0]])
        prod = Matrix(dtype=np.float64).assign_element_product_of_with_shift(a, b, 1)
        np.testing.assert_array_equal(prod.to_numpy(), [[20.0, 60.0, 30.0]])
        stacked = Matrix(dtype=np.float64).assign_shift_neg_of(b, 1, 2)
        np.testing.assert_array_equal(
            stacked.to_numpy(), [[10, 20, 30], [20, 30, 10], [30, 10, 20]]
        )


class TestMatrixDevices(unittest.TestCase):
    def test_numeric_work_on_cuda_is_not_supported(self):
        m = Matrix(2, 2)
        m.move_to(Device("cuda:0"))
        self.assertEqual(m.device, Device("cuda:0"))
        with self.assertRaises(DeviceNotSupportedError):
            m.fill(1.0)

    def test_mixed_devices(self):
        a, b = Matrix(2, 2), Matrix(2, 2)
        b.move_to(Device("cuda:0"))
        with self.assertRaises(DeviceMismatchError):
            Matrix().assign_sum_of(a, b)


if __name__ == "__main__":
    unittest.main()

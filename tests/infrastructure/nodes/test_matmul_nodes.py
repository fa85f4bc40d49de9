# tests/infrastructure/nodes/test_matmul_nodes.py

import unittest

import numpy as np

from src.tensornodes.domain._errors import (
    InvalidArgumentError,
    LogicError,
    ShapeError,
)
from src.tensornodes.domain._frame_range import FrameRange
from src.tensornodes.domain._matrix import StorageFormat
from src.tensornodes.infrastructure._layout import MBLayout
from src.tensornodes.infrastructure._scratch_pool import ScratchPool
from src.tensornodes.infrastructure.nodes import (
    ConstantNode,
    InputValue,
    KhatriRaoProduct,
    LearnableParameter,
    StrideTimes,
    Times,
    TransposeTimes,
)

from ._node_test_utils import (
    ALL,
    assert_gradients_match,
    evaluate_all,
    forward_backward,
    random_matrix,
    validate_all,
)


def _param(name, arr):
    return LearnableParameter(name, value=np.asarray(arr, dtype=np.float64), dtype=np.float64)


def _selector(value):
    return ConstantNode("stride_dim", np.asarray(value, dtype=np.float64), dtype=np.float64)


class TestTimes(unittest.TestCase):
    SHAPES = [(1, 1, 1), (3, 4, 2), (2, 5, 1), (1, 3, 6), (4, 4, 4), (6, 2, 3)]

    def test_value(self):
        rng = np.random.default_rng(5)
        a_val, b_val = random_matrix(rng, 3, 4), random_matrix(rng, 4, 2)
        a, b = _param("a", a_val), _param("b", b_val)
        t = Times("t", a, b, dtype=np.float64)
        validate_all(a, b, t)
        evaluate_all([a, b, t])
        np.testing.assert_allclose(t.value.to_numpy(), a_val @ b_val)

    def test_finite_differences(self):
        rng = np.random.default_rng(6)
        for m, k, n in self.SHAPES:
            with self.subTest(shape=(m, k, n)):
                a = _param("a", random_matrix(rng, m, k))
                b = _param("b", random_matrix(rng, k, n))
                t = Times("t", a, b, dtype=np.float64)
                validate_all(a, b, t)
                assert_gradients_match([a, b, t], [a, b])

    def test_inner_dimension_mismatch(self):
        t = Times("t", LearnableParameter("a", 3, 4), LearnableParameter("b", 5, 2))
        t.validate(False)
        with self.assertRaises(ShapeError):
            t.validate(True)

    def test_left_operand_with_layout(self):
        x = InputValue("x", 3, layout=MBLayout(2, 2))
        t = Times("t", x, LearnableParameter("w", 4, 2))
        with self.assertRaises(InvalidArgumentError):
            t.validate(True)

    def test_output_keeps_right_layout(self):
        layout = MBLayout(2, 3)
        x = InputValue("x", 4, layout=layout)
        w = LearnableParameter("w", 2)
        t = Times("t", w, x)
        validate_all(w, x, t)
        self.assertEqual(w.shape, (2, 4))
        self.assertIs(t.layout, layout)
        self.assertEqual(t.shape, (2, 6))

    def test_per_frame_evaluation_and_gradients(self):
        rng = np.random.default_rng(7)
        layout = MBLayout(2, 3)
        x = InputValue("x", 4, layout=layout, dtype=np.float64)
        x.set_value(random_matrix(rng, 4, 6))
        w = _param("w", random_matrix(rng, 3, 4))
        t = Times("t", w, x, dtype=np.float64)
        validate_all(w, x, t)
        frames = [FrameRange.at(i) for i in range(3)]
        evaluate_all([w, x, t], frames=frames)
        np.testing.assert_allclose(t.value.to_numpy(), w.value.to_numpy() @ x.value.to_numpy())
        assert_gradients_match([w, x, t], [w, x], frames=frames)

    def test_left_gradient_skips_padding(self):
        layout = MBLayout(2, 2)
        layout.set_gap(1, 1)
        x = InputValue("x", 2, layout=layout, dtype=np.float64)
        x.set_value(np.ones((2, 4)))
        w = _param("w", np.ones((1, 2)))
        t = Times("t", w, x, dtype=np.float64)
        validate_all(w, x, t)
        forward_backward([w, x, t])
        np.testing.assert_array_equal(w.gradient.to_numpy(), [[3.0, 3.0]])

    def test_sparse_right_operand_switches_left_gradient(self):
        x = InputValue("x", 4, 3, sparse=True)
        x.set_value(np.eye(4, 3))
        w = LearnableParameter("w", value=np.ones((2, 4)))
        t = Times("t", w, x)
        validate_all(w, x, t)
        forward_backward([w, x, t])
        self.assertIs(w.gradient.storage, StorageFormat.SPARSE_BLOCK_COL)
        self.assertIs(x.value.storage, StorageFormat.SPARSE_CSC)
        np.testing.assert_allclose(w.gradient.to_numpy(), np.ones((2, 3)) @ np.eye(4, 3).T)


class TestTransposeTimes(unittest.TestCase):
    def test_value_and_gradients(self):
        rng = np.random.default_rng(8)
        for k, m, n in ((4, 3, 2), (1, 1, 5), (5, 2, 1)):
            with self.subTest(shape=(k, m, n)):
                a_val, b_val = random_matrix(rng, k, m), random_matrix(rng, k, n)
                a, b = _param("a", a_val), _param("b", b_val)
                t = TransposeTimes("t", a, b, dtype=np.float64)
                validate_all(a, b, t)
                evaluate_all([a, b, t])
                np.testing.assert_allclose(t.value.to_numpy(), a_val.T @ b_val)
                assert_gradients_match([a, b, t], [a, b])

    def test_row_count_inferred(self):
        a = LearnableParameter("a", 0, 3)
        b = LearnableParameter("b", 6, 2)
        t = TransposeTimes("t", a, b)
        validate_all(a, b, t)
        self.assertEqual(a.shape, (6, 3))
        self.assertEqual(t.shape, (3, 2))


class TestStrideTimes(unittest.TestCase):
    def _build(self, a_val, b_val, stride_dim):
        a, b = _param("a", a_val), _param("b", b_val)
        sel = _selector([[stride_dim]])
        node = StrideTimes("st", a, b, sel, dtype=np.float64)
        validate_all(a, b, sel, node)
        return a, b, sel, node

    def test_column_stride_matches_loop(self):
        rng = np.random.default_rng(9)
        d, steps, s = 3, 4, 2
        a_val, b_val = random_matrix(rng, d, steps * s), random_matrix(rng, steps, s)
        a, b, sel, node = self._build(a_val, b_val, StrideTimes.COLUMN_STRIDE)
        self.assertEqual(node.shape, (d, s))
        evaluate_all([a, b, sel, node])
        expected = np.stack([a_val[:, k::s] @ b_val[:, k] for k in range(s)], axis=1)
        np.testing.assert_allclose(node.value.to_numpy(), expected)
        assert_gradients_match([a, b, sel, node], [a, b])

    def test_row_stride_matches_loop(self):
        rng = np.random.default_rng(10)
        d, steps, s = 3, 4, 2
        a_val, b_val = random_matrix(rng, steps * s, d), random_matrix(rng, d, s)
        a, b, sel, node = self._build(a_val, b_val, StrideTimes.ROW_STRIDE)
        self.assertEqual(node.shape, (steps, s))
        evaluate_all([a, b, sel, node])
        expected = np.stack([a_val[k::s, :] @ b_val[:, k] for k in range(s)], axis=1)
        np.testing.assert_allclose(node.value.to_numpy(), expected)
        assert_gradients_match([a, b, sel, node], [a, b])

    def test_invalid_selector(self):
        for value in ([[2.0]], [[0.0, 1.0]]):
            with self.subTest(selector=value):
                node = StrideTimes(
                    "st", LearnableParameter("a", 3, 4), LearnableParameter("b", 2, 2),
                    _selector(value),
                )
                with self.assertRaises(InvalidArgumentError):
                    node.validate(False)

    def test_row_stride_shape_mismatch(self):
        a, b = LearnableParameter("a", 7, 3), LearnableParameter("b", 3, 2)
        node = StrideTimes("st", a, b, _selector([[StrideTimes.ROW_STRIDE]]))
        node.validate(False)
        with self.assertRaises(ShapeError):
            node.validate(True)

    def test_all_frames_only_and_selector_not_differentiable(self):
        rng = np.random.default_rng(12)
        a, b, sel, node = self._build(
            random_matrix(rng, 2, 4), random_matrix(rng, 2, 2), StrideTimes.COLUMN_STRIDE
        )
        with self.assertRaises(LogicError):
            node.evaluate(FrameRange.at(0))
        pool = ScratchPool(dtype=np.float64)
        node.request_scratch_before_eval(pool)
        node.evaluate(ALL)
        with self.assertRaises(InvalidArgumentError):
            node.compute_gradient(2, ALL)


class TestKhatriRaoProduct(unittest.TestCase):
    def test_columnwise_kronecker(self):
        rng = np.random.default_rng(13)
        a_val, b_val = random_matrix(rng, 2, 3), random_matrix(rng, 4, 3)
        a, b = _param("a", a_val), _param("b", b_val)
        kr = KhatriRaoProduct("kr", a, b, dtype=np.float64)
        validate_all(a, b, kr)
        evaluate_all([a, b, kr])
        self.assertEqual(kr.shape, (8, 3))
        for k in range(3):
            np.testing.assert_allclose(
                kr.value.to_numpy()[:, k], np.kron(b_val[:, k], a_val[:, k])
            )
        assert_gradients_match([a, b, kr], [a, b])

    def test_column_count_mismatch(self):
        kr = KhatriRaoProduct("kr", LearnableParameter("a", 2, 3), LearnableParameter("b", 2, 4))
        kr.validate(False)
        with self.assertRaises(ShapeError):
            kr.validate(True)


if __name__ == "__main__":
    unittest.main()

# tests/infrastructure/nodes/test_node_base.py

import unittest

import numpy as np

from src.tensornodes.domain._errors import (
    DeviceMismatchError,
    DeviceNotSupportedError,
    InvalidArgumentError,
    ScratchLeaseError,
    ShapeError,
)
from src.tensornodes.domain._frame_range import FrameRange
from src.tensornodes.domain._image_layout import ImageLayout
from src.tensornodes.domain._matrix import StorageFormat
from src.tensornodes.domain.device._device import Device
from src.tensornodes.infrastructure._layout import MBLayout
from src.tensornodes.infrastructure._scratch_pool import ScratchPool
from src.tensornodes.infrastructure.nodes import (
    ConstantNode,
    CosDistance,
    InputValue,
    LearnableParameter,
    Plus,
    Times,
)

from ._node_test_utils import validate_all


class TestArity(unittest.TestCase):
    def test_wrong_number_of_inputs(self):
        a = LearnableParameter("a", 2, 2)
        with self.assertRaises(InvalidArgumentError):
            Plus("p", a)
        with self.assertRaises(InvalidArgumentError):
            Plus("p", a, a, a)

    def test_inputs_must_be_nodes(self):
        a = LearnableParameter("a", 2, 2)
        with self.assertRaises(InvalidArgumentError):
            Plus("p", a, np.ones((2, 2)))

    def test_late_attachment_checked_at_validation(self):
        p = Plus("p")
        with self.assertRaises(InvalidArgumentError):
            p.validate(False)
        p.attach_inputs(LearnableParameter("a", 2, 2), LearnableParameter("b", 2, 2))
        validate_all(p.input(0), p.input(1), p)
        self.assertEqual(p.shape, (2, 2))

    def test_unknown_input_index(self):
        a, b = LearnableParameter("a", 2, 2), LearnableParameter("b", 2, 2)
        p = Plus("p", a, b)
        validate_all(a, b, p)
        with self.assertRaises(InvalidArgumentError):
            p.compute_gradient(2, FrameRange.all())

    def test_leaves_have_no_gradient_inputs(self):
        a = LearnableParameter("a", 2, 2)
        with self.assertRaises(InvalidArgumentError):
            a.compute_gradient(0, FrameRange.all())

    def test_unsupported_element_type(self):
        with self.assertRaises(InvalidArgumentError):
            LearnableParameter("a", 2, 2, dtype=np.int32)


class TestShapeInference(unittest.TestCase):
    def test_inferable_peer_receives_dimensions(self):
        x = InputValue("x", rows=5, cols=7)
        w = LearnableParameter("w", rows=3)
        y = Times("y", w, x)
        w.validate(False)
        x.validate(False)
        y.validate(False)
        self.assertEqual(w.shape, (3, 5))
        validate_all(w, x, y)
        self.assertEqual(y.shape, (3, 7))

    def test_unresolved_parameter_fails_final_pass(self):
        w = LearnableParameter("w", rows=3)
        with self.assertRaises(ShapeError) as ctx:
            w.validate(True)
        self.assertEqual(ctx.exception.node_name, "w")

    def test_constants_are_not_inferred(self):
        c = ConstantNode("c", np.ones((2, 2)))
        c.infer_dims(5, 5)
        self.assertEqual(c.shape, (2, 2))

    def test_incompatible_layouts(self):
        x1 = InputValue("x1", 3, layout=MBLayout(2, 2))
        x2 = InputValue("x2", 3, layout=MBLayout(4, 1))
        p = Plus("p", x1, x2)
        p.validate(False)
        with self.assertRaises(ShapeError):
            p.validate(True)

    def test_shared_layout_is_inherited(self):
        layout = MBLayout(2, 2)
        x1 = InputValue("x1", 3, layout=layout)
        x2 = InputValue("x2", 3, layout=layout)
        p = Plus("p", x1, x2)
        validate_all(x1, x2, p)
        self.assertIs(p.layout, layout)

    def test_describe(self):
        a, b = LearnableParameter("a", 2, 3), LearnableParameter("b", 2, 3)
        p = Plus("sum", a, b)
        self.assertEqual(p.describe(), "sum = Plus(a[2 x 3], b[2 x 3])")


class TestFramesAndMasking(unittest.TestCase):
    def setUp(self):
        self.layout = MBLayout(2, 2)
        self.layout.set_gap(1, 1)
        self.x = InputValue("x", 2, layout=self.layout, dtype=np.float64)
        self.x.set_value(np.arange(1.0, 9.0).reshape(2, 4))

    def test_value_slice_per_frame(self):
        s = self.x.value_slice(FrameRange.at(1))
        np.testing.assert_array_equal(s.to_numpy(), [[3.0, 4.0], [7.0, 8.0]])
        self.assertTrue(s.is_view)

    def test_masked_value_slice_leaves_value_untouched(self):
        masked = self.x.masked_value_slice(FrameRange.all()).to_numpy()
        np.testing.assert_array_equal(masked[:, 3], [0.0, 0.0])
        np.testing.assert_array_equal(self.x.value.to_numpy()[:, 3], [4.0, 8.0])

    def test_nodes_without_layout_ignore_frames(self):
        w = LearnableParameter("w", value=np.ones((2, 3)))
        self.assertEqual(w.value_slice(FrameRange.at(5)).shape, (2, 3))

    def test_gradient_is_lazily_zero_allocated(self):
        self.assertFalse(self.x.has_gradient)
        np.testing.assert_array_equal(self.x.gradient.to_numpy(), np.zeros((2, 4)))
        self.x.gradient.fill(1.0)
        self.x.zero_gradient()
        self.assertEqual(self.x.gradient.sum_of_elements(), 0.0)

    def test_mask_gradient_gaps_in_place(self):
        self.x.gradient.fill(1.0)
        self.x.mask_gradient_gaps(FrameRange.at(1))
        np.testing.assert_array_equal(self.x.gradient.to_numpy(), [[1, 1, 1, 0], [1, 1, 1, 0]])


class TestScratchHooks(unittest.TestCase):
    def _cos(self):
        a = LearnableParameter("a", value=np.ones((3, 2)))
        b = LearnableParameter("b", value=np.ones((3, 2)))
        cos = CosDistance("cos", a, b)
        validate_all(a, b, cos)
        return cos

    def test_scratch_outside_lease(self):
        cos = self._cos()
        with self.assertRaises(ScratchLeaseError):
            cos.evaluate(FrameRange.all())

    def test_double_request(self):
        cos, pool = self._cos(), ScratchPool()
        cos.request_scratch_before_eval(pool)
        with self.assertRaises(ScratchLeaseError):
            cos.request_scratch_before_eval(pool)

    def test_eval_scratch_survives_until_gradient_release(self):
        cos, pool = self._cos(), ScratchPool()
        cos.request_scratch_before_eval(pool)
        cos.evaluate(FrameRange.all())
        cos.request_scratch_before_gradient(pool)
        self.assertEqual(
            set(cos.leased_scratch_names),
            {"inv_norm0", "inv_norm1", "left_term", "right_term", "temp"},
        )
        cos.release_scratch_after_gradient(pool)
        self.assertEqual(cos.leased_scratch_names, ())
        pool.assert_all_released()

    def test_release_after_eval_for_inference(self):
        cos, pool = self._cos(), ScratchPool()
        cos.request_scratch_before_eval(pool)
        cos.evaluate(FrameRange.all())
        cos.release_scratch_after_eval(pool)
        self.assertEqual(pool.num_leased, 0)
        with self.assertRaises(ScratchLeaseError):
            cos.release_scratch_after_eval(pool)


class TestPlacementAndDescriptors(unittest.TestCase):
    def test_move_to_delegates_to_matrices(self):
        a = LearnableParameter("a", value=np.ones((2, 2)))
        b = LearnableParameter("b", value=np.ones((2, 2)))
        p = Plus("p", a, b)
        validate_all(a, b, p)
        p.move_to(Device("cuda:0"))
        self.assertEqual(p.value.device, Device("cuda:0"))
        with self.assertRaises(DeviceMismatchError):
            p.evaluate(FrameRange.all())

    def test_cuda_numeric_work_not_supported(self):
        dev = Device("cuda:0")
        a = LearnableParameter("a", value=np.ones((2, 2)), device=dev)
        b = LearnableParameter("b", value=np.ones((2, 2)), device=dev)
        p = Plus("p", a, b, device=dev)
        validate_all(a, b, p)
        with self.assertRaises(DeviceNotSupportedError):
            p.evaluate(FrameRange.all())

    def test_leaf_image_layouts(self):
        x = InputValue("x", 12, 4, image_layout=ImageLayout(2, 2, 3))
        self.assertEqual(x.output_image_layout, ImageLayout(2, 2, 3))
        w = LearnableParameter("w", 5, 3)
        self.assertEqual(w.output_image_layout, ImageLayout(1, 5, 1))
        with self.assertRaises(InvalidArgumentError):
            InputValue("bad", 10, 4, image_layout=ImageLayout(2, 2, 3))

    def test_sparse_input(self):
        x = InputValue("x", 4, 3, sparse=True)
        self.assertIs(x.value.storage, StorageFormat.SPARSE_CSC)


if __name__ == "__main__":
    unittest.main()

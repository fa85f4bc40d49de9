"""
Error taxonomy for tensornodes.

This module defines the exceptions raised by the node catalogue. Every
failure in this layer is a deterministic function of graph topology, tensor
shapes or node configuration, so none of these errors is ever retried or
silently recovered: they propagate synchronously out of the call that
discovered them.

The taxonomy distinguishes:

- `ShapeError`: final-pass validation found an unresolved or incompatible
  dimension. Raised while preparing the graph.
- `LogicError`: numeric code was reached with a shape combination that
  validation should have rejected, or a node was driven in a mode it does not
  support. Signals an internal inconsistency.
- `InvalidArgumentError`: structurally invalid node configuration (wrong
  arity, non-scalar control input, unsupported element type).
- `ScratchLeaseError`: violation of the scratch-pool request/release
  contract. Subclasses `AssertionError` because it is a programming error.
- `DeviceNotSupportedError` / `DeviceMismatchError`: numeric work requested
  on a placement the tensor primitive cannot compute on.
"""

from __future__ import annotations

from typing import Optional, Sequence


class ShapeError(RuntimeError):
    """
    Raised when final-pass validation cannot resolve or reconcile dimensions.

    Attributes
    ----------
    node_name : str
        Name of the node whose validation failed.
    operation : str
        Operation name of the node (e.g., "Plus", "Times").
    shapes : tuple[tuple[int, int], ...]
        Operand shapes observed at the time of failure.
    """

    def __init__(
        self,
        node_name: str,
        operation: str,
        detail: str,
        shapes: Sequence[tuple[int, int]] = (),
    ) -> None:
        """
        Initialize the ShapeError.

        Parameters
        ----------
        node_name : str
            Name of the offending node.
        operation : str
            Operation name of the offending node.
        detail : str
            Human-readable description of the mismatch.
        shapes : Sequence[tuple[int, int]], optional
            Operand shapes involved in the failure.
        """
        self.node_name = node_name
        self.operation = operation
        self.shapes = tuple(tuple(s) for s in shapes)
        shape_text = ", ".join(f"[{r} x {c}]" for r, c in self.shapes)
        suffix = f" (operands: {shape_text})" if shape_text else ""
        super().__init__(f"{node_name} {operation} operation: {detail}{suffix}")


class LogicError(RuntimeError):
    """
    Raised when an operation reaches a state validation should have excluded.

    Reaching this error always indicates a bug in the resolver or in the
    caller driving the node (for example, the scheduler invoking a
    non-looping node for a single frame).
    """


class InvalidArgumentError(ValueError):
    """
    Raised for structurally invalid node configuration.

    Typical triggers are a wrong number of inputs, a control input that is
    not a single element, or an unsupported element type.
    """


class ScratchLeaseError(AssertionError):
    """
    Raised when the scratch-pool request/release contract is violated.

    Attributes
    ----------
    owner : Optional[str]
        Name of the node that violated the contract, when known.
    """

    def __init__(self, message: str, owner: Optional[str] = None) -> None:
        """
        Initialize the ScratchLeaseError.

        Parameters
        ----------
        message : str
            Description of the violation.
        owner : Optional[str], optional
            Name of the node that owns (or claimed to own) the lease.
        """
        prefix = f"{owner}: " if owner else ""
        super().__init__(prefix + message)
        self.owner = owner


class DeviceNotSupportedError(RuntimeError):
    """
    Raised when numeric work is requested on a placement without a backend.

    Matrices may be *placed* on any device descriptor, but the NumPy backend
    only computes on the CPU.

    Attributes
    ----------
    op : str
        The name of the operation that was attempted.
    device : str
        String representation of the device.
    """

    def __init__(self, op: str, device: str) -> None:
        super().__init__(f"{op} is not implemented for device '{device}'.")
        self.op = op
        self.device = device


class DeviceMismatchError(RuntimeError):
    """
    Raised when operands of one operation live on different devices.

    Attributes
    ----------
    device_a : str
        Device of the first mismatching operand.
    device_b : str
        Device of the second mismatching operand.
    """

    def __init__(self, device_a: str, device_b: str) -> None:
        super().__init__(f"Device mismatch: '{device_a}' vs '{device_b}'.")
        self.device_a = device_a
        self.device_b = device_b

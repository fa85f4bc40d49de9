"""
Node catalogue public API.

Exports
-------
- ComputationNode: shared base of every node kind.
- Leaves: LearnableParameter, InputValue, ConstantNode.
- Element-wise: Plus, Minus, Scale, Negate, ElementTimes, RowElementTimes,
  ColumnElementTimes, DiagTimes.
- Matrix products: Times, TransposeTimes, StrideTimes, KhatriRaoProduct.
- Similarity: CosDistance, CosDistanceWithNegativeSamples.
- Reductions: SumElements, SumColumnElements, Transpose, Diagonal.
"""

from ._base import ComputationNode
from ._leaf import ConstantNode, InputValue, LearnableParameter
from ._elementwise import (
    ColumnElementTimes,
    DiagTimes,
    ElementTimes,
    Minus,
    Negate,
    Plus,
    RowElementTimes,
    Scale,
)
from ._matmul import KhatriRaoProduct, StrideTimes, Times, TransposeTimes
from ._similarity import CosDistance, CosDistanceWithNegativeSamples
from ._reduction import Diagonal, SumColumnElements, SumElements, Transpose

__all__ = [
    ComputationNode.__name__,
    LearnableParameter.__name__,
    InputValue.__name__,
    ConstantNode.__name__,
    Plus.__name__,
    Minus.__name__,
    Scale.__name__,
    Negate.__name__,
    ElementTimes.__name__,
    RowElementTimes.__name__,
    ColumnElementTimes.__name__,
    DiagTimes.__name__,
    Times.__name__,
    TransposeTimes.__name__,
    StrideTimes.__name__,
    KhatriRaoProduct.__name__,
    CosDistance.__name__,
    CosDistanceWithNegativeSamples.__name__,
    SumElements.__name__,
    SumColumnElements.__name__,
    Transpose.__name__,
    Diagonal.__name__,
]

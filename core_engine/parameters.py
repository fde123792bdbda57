"""Scalar-or-per-facet material parameters.

Bond albedo, thermal albedo, emissivity and the conduction properties may be
given either as one value for the whole body or as one value per facet.
Flux and energy routines only ever ask for "the value at facet i" or for a
dense per-facet array, so a single code path serves both cases.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence, Union

import numpy as np


class FacetParameter(ABC):
    """Value-at-facet accessor. Use :func:`as_parameter` to construct."""

    is_uniform: bool = False

    @abstractmethod
    def at(self, index: int) -> float:
        """Value on facet ``index``."""

    @abstractmethod
    def as_array(self, num_facets: int) -> np.ndarray:
        """Dense float64 array of length ``num_facets``."""

    @abstractmethod
    def min(self) -> float: ...

    @abstractmethod
    def max(self) -> float: ...


class UniformParameter(FacetParameter):
    """The same value on every facet."""

    is_uniform = True

    def __init__(self, value: float) -> None:
        self.value = float(value)

    def at(self, index: int) -> float:
        return self.value

    def as_array(self, num_facets: int) -> np.ndarray:
        return np.full(num_facets, self.value, dtype=np.float64)

    def min(self) -> float:
        return self.value

    def max(self) -> float:
        return self.value

    def __repr__(self) -> str:
        return f"UniformParameter({self.value!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, UniformParameter) and other.value == self.value

    def __hash__(self) -> int:
        return hash(self.value)


class PerFacetParameter(FacetParameter):
    """One value per facet, backed by a read-only float64 array."""

    def __init__(self, values: Sequence[float] | np.ndarray) -> None:
        arr = np.array(values, dtype=np.float64).ravel()
        arr.setflags(write=False)
        self.values = arr

    def at(self, index: int) -> float:
        return float(self.values[index])

    def as_array(self, num_facets: int) -> np.ndarray:
        if self.values.shape[0] != num_facets:
            raise ValueError(
                f"Per-facet parameter has {self.values.shape[0]} values, "
                f"mesh has {num_facets} facets"
            )
        return self.values

    def min(self) -> float:
        return float(self.values.min())

    def max(self) -> float:
        return float(self.values.max())

    def __len__(self) -> int:
        return self.values.shape[0]

    def __repr__(self) -> str:
        return f"PerFacetParameter(<{self.values.shape[0]} values>)"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PerFacetParameter) and np.array_equal(
            other.values, self.values
        )

    def __hash__(self) -> int:
        return hash(self.values.tobytes())


ParameterLike = Union[float, int, Sequence[float], np.ndarray, FacetParameter]


def as_parameter(value: ParameterLike) -> FacetParameter:
    """Wrap a scalar, sequence, array or existing parameter.

    Examples
    --------
    >>> as_parameter(0.1).at(5)
    0.1
    >>> as_parameter([0.1, 0.2]).at(1)
    0.2
    """
    if isinstance(value, FacetParameter):
        return value
    if np.ndim(value) == 0:
        return UniformParameter(float(value))
    return PerFacetParameter(value)

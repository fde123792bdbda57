"""Error kinds raised by the thermophysical engine.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Every operation in the engine is a deterministic numerical transform, so
none of these errors is transient and nothing in the package retries.

- ``InvalidMeshError``: detected at mesh construction, fatal.
- ``NumericalDivergenceError``: non-finite temperature or flux, fatal.
- ``UndefinedConservationRatio``: warning category, E_in ≈ 0 for a step.
"""

from __future__ import annotations


class TPMError(Exception):
    """Base class for all thermophysical-model errors."""


class InvalidMeshError(TPMError, ValueError):
    """Degenerate facet or malformed visibility list."""


class NumericalDivergenceError(TPMError, ArithmeticError):
    """A temperature or flux became non-finite during a step.

    Parameters
    ----------
    facet_index : int
        Index of the first offending facet.
    step : int
        Zero-based step number at which the value was detected.
    quantity : str
        Name of the field that diverged (e.g. ``"temperature"``).
    """

    def __init__(self, facet_index: int, step: int, quantity: str = "temperature") -> None:
        self.facet_index = facet_index
        self.step = step
        self.quantity = quantity
        super().__init__(
            f"Non-finite {quantity} at facet {facet_index} on step {step}; "
            "aborting run"
        )


class UndefinedConservationRatio(RuntimeWarning):
    """Input energy is ~0 so E_out / E_in is undefined for this step."""

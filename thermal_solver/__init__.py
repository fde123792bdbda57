"""AsteroidThermalModel — Thermal Solver Package.

Explicit 1D heat conduction below every facet, with a nonlinear radiative
surface boundary and an insulating bottom boundary.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

"""AsteroidThermalModel — Core Engine Package.

Facet shape models, BVH raytracing, radiative flux, mutual eclipses,
photon-recoil force/torque and energy bookkeeping for asteroid
thermophysical modelling.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

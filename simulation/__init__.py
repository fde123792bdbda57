"""AsteroidThermalModel — Simulation Package.

Run drivers, kinematics adapters, timestamp records and result persistence.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

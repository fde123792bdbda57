"""AsteroidThermalModel — Data Ingestion Package.

Synthetic closed shape models for tests and demonstration runs.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

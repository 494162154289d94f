"""Elevation-angle sensor fusion.

Records elevation angles from a local inertial sensor or a BLE
wearable, estimates them with two filters and keeps a history of
recorded sessions.
"""

__version__ = "0.1.0"

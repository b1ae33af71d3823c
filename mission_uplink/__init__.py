"""
Mission Uplink

Uploads navigation missions to MAVLink autopilots over serial, UDP or TCP.
"""

__version__ = "0.1.0"

"""
Serial HTTP Bridge (serbridge).

Relays line-oriented serial devices to HTTP clients. Any number of clients
can stream a device's output while writes are serialized per device.
"""

__version__ = "0.1.0"

"""
DataLayer Manager license subsystem.

License client for the DataLayer Manager plugin (activation, validation,
status caching and the premium feature gate) and the license control layer
that proxies license checks to Lemon Squeezy.
"""

__version__ = "1.0.0"

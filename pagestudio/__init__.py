"""
PageStudio - visual page builder editor core
"""

__version__ = "0.1.0"

"""
Disaggregate a national input-output table into balanced state tables.
Authors: Dennies Bor, Ed Oughton
"""

__version__ = "0.1.0"

"""
perfbench - declarative query benchmarks with comparable reports.
"""

__version__ = "0.1.0"

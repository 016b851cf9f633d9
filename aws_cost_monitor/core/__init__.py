"""
Core modules for AWS Cost Monitor.

This package contains the incremental cost sync, the comparison windows
and the period-over-period cost analysis.
"""

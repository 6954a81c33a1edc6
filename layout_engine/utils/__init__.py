"""
Shared helpers for layout solvers.
"""

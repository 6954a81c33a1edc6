"""
Benchmark package for layout strategy evaluation.
"""
from .test_cases import BENCHMARK_CASES, BenchmarkCase
from .runner import BenchmarkRunner, BenchmarkResult

__all__ = [
    'BENCHMARK_CASES',
    'BenchmarkCase',
    'BenchmarkRunner',
    'BenchmarkResult'
]

"""
Simulation engine package.
"""
from .force_simulation import ForceSettings, ForceSimulation, SimulationWorker

__all__ = [
    'ForceSettings',
    'ForceSimulation',
    'SimulationWorker'
]

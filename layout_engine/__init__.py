"""
Layout engine for interactive 3D node graphs.

Strategies compute node positions behind a single contract
(``layout_engine.solvers.base.LayoutStrategy``); the orchestrator and the
hybrid composer switch between them with animated transitions.
"""

__version__ = "0.1.0"

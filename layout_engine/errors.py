"""Exception types raised by layout components."""


class LayoutError(Exception):
    """Base class for layout engine errors."""


class UnknownStrategyError(LayoutError):
    """Requested strategy name is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown layout strategy: {name}")
        self.name = name


class ConstraintNodeError(LayoutError):
    """A constraint references node ids the solver does not know."""

    def __init__(self, missing):
        missing = sorted(missing)
        super().__init__(f"Constraint references unknown nodes: {', '.join(missing)}")
        self.missing = missing


class SimulationLostError(LayoutError):
    """The background simulation thread terminated unexpectedly."""

from .base import Base
from .framework import Framework, Control
from .compliance import ControlMapping
from .implementation import ImplementationPlan, ImplementationTask

__all__ = [
    "Base",
    "Framework", "Control",
    "ControlMapping",
    "ImplementationPlan", "ImplementationTask",
]

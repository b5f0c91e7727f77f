"""Built-in capability modules."""

from .core import CORE_MODULE, core_module

__all__ = ["CORE_MODULE", "core_module"]

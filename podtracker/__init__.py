"""Feed-driven podcast episode tracker."""

__version__ = "0.1.0"

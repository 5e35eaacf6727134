"""Route blueprints for the dashboard Flask application."""

from .api import api_bp
from .optimize import optimize_bp

__all__ = ["api_bp", "optimize_bp"]

"""agentdocs package root."""

from agentdocs.exceptions import NeverRaise, NeverThrown
from agentdocs.invariants import never

__all__ = ["__version__", "NeverRaise", "NeverThrown", "never"]

__version__ = "0.1.0"

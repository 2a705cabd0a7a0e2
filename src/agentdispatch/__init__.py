"""
AgentDispatch - routes named commands to agents and composes their
budget-constrained context bundles before dispatching the runs.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]

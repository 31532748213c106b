"""devsetup: dependency-ordered, resumable development machine provisioning.

Core design goals:
- Declarative component graph
- Deterministic, cycle-checked execution order
- Resumable state with durable writes
- Failure isolation with dependent skipping
- Centralized logging
"""

__version__ = "0.1.0"

__all__ = ["__version__"]

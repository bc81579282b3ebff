"""toolchat: terminal chat with a remote language model that runs tools.

The package contains the orchestration core (tool registry, dispatcher,
streaming parser and conversation manager), a command-line session driver
and a reference FastAPI tool server.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]

"""Built-in tools and the executor that runs them."""

from pairagent.tools.executor import ToolExecutor
from pairagent.tools.definitions import INSTRUCTOR_TOOLS, WORKER_TOOLS

__all__ = ["ToolExecutor", "INSTRUCTOR_TOOLS", "WORKER_TOOLS"]

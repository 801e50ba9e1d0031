"""Autonomous code-modification agent runtime.

The agent drives a typed entity graph describing a developer workspace
through plan/decide/query/perform/check-completion iterations, using a
language model (behind a judge) as its decision oracle.
"""

__version__ = "0.1.0"

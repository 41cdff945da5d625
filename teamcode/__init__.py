"""teamcode: a terminal coding agent that can delegate to subagents and
run teams of autonomous teammates over a shared task queue."""

__version__ = "0.1.0"

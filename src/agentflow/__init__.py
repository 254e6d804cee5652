"""AgentFlow - agent planning, rules and memory."""

__version__ = "0.1.0"

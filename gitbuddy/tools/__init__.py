from gitbuddy.tools.registry import ToolDef, ToolOutcome, ToolRegistry

__all__ = ["ToolDef", "ToolOutcome", "ToolRegistry"]

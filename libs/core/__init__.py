__all__ = [
    "models",
    "state_machine",
    "tool_registry",
    "logging",
]

from gitbuddy.git.executor import GitExecutor, LogOptions

__all__ = ["GitExecutor", "LogOptions"]

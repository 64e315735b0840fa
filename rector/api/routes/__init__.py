from . import documents, events, jobs, latex

__all__ = ["documents", "events", "jobs", "latex"]

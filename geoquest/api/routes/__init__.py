from . import providers, questions, tasks

__all__ = ["providers", "questions", "tasks"]

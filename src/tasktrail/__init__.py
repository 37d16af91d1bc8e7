# src/tasktrail/__init__.py

"""Data synchronization and recurrence layer of a task/project tracker."""

__version__ = "0.1.0"

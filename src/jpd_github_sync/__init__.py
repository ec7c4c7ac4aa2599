"""Jira Product Discovery to GitHub Issues synchronisation.

The package keeps no database: every synced GitHub issue carries a hidden
state block in its body, and parent issues carry a task-list projection
of their children.  See ``jpd_github_sync.sync`` for the engine.
"""

__version__ = "0.1.0"

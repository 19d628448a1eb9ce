"""
Workflow lifecycle service: persists workflows, keeps their trigger
registration consistent with the stored active flag, and manages users.
"""

__version__ = "0.1.0"

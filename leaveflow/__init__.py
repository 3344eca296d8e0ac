"""LeaveFlow: multi-level approval workflow for student leave and outpass requests."""

__version__ = "1.0.0"

"""Services backing the LeaveFlow workflow."""

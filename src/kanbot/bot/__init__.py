"""Chat-facing logic: message routing and free-text task interpretation."""

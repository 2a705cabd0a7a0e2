"""Resolution, dispatch and aggregation of command runs."""

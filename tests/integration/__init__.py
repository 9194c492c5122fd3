"""scaffold-planner integration tests (CLI subprocess contracts)."""

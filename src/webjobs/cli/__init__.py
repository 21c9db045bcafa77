"""webjobs command line interface."""

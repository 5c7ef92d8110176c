"""indexsync command line interface."""

"""Domain models and policies, free of I/O."""

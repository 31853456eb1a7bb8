"""Environment-driven settings and logging setup."""

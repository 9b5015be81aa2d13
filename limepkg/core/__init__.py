"""Archive codec, dependency resolver and lifecycle engine."""

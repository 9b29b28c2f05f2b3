"""Domain layer: clock, exceptions, external interfaces and pure services."""

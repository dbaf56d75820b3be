"""Domain Layer: value objects, error types, usage models, ports and events."""

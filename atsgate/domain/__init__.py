"""Domain Layer: value objects, events and interfaces with no I/O."""

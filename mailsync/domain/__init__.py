"""Domain layer: enums, exceptions, entities, value objects and sync policy."""

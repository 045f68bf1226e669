"""Infrastructure adapters: persistence, vendor clients and messaging."""

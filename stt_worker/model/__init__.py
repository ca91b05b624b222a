"""Model data types and inference engine adapters."""

"""Worker application layer and transports."""

"""Core building blocks: envelopes, errors, configuration and logging."""

"""Build configuration, source discovery, target graph and build execution."""

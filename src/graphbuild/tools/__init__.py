"""Optional verification tools: discovery, task registration and runners."""

"""Development helpers (opt-in instrumentation) that the runtime can call cheaply."""

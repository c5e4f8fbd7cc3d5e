"""Domain logic for calendarsync_lite (registry, cache, merge, local events, fan-out)."""

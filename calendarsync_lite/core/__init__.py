"""Core infrastructure for calendarsync_lite: config, HTTP clients, health, time."""

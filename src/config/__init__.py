"""
Configuration for venue credentials and connection behaviour.

Provides the immutable VenueConfig (one venue's credentials and options,
loadable from environment variables) and the process-wide Settings for
stream reconnection and REST timeouts.
"""

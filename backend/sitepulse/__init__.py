"""SitePulse - site health checks and incident lifecycle."""

"""Course channels, presence, chat relay and per-user notifications."""

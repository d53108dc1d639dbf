"""Study plan scheduling backend."""

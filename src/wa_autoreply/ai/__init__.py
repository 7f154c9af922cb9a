"""Reply policy and completion backends."""

"""Terminal monitor for agent activity."""

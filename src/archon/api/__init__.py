"""HTTP gateway over the agent manager."""

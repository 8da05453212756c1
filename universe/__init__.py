"""Universe chat: group and purge lifecycle engine."""

"""Pearl Gate: admin-approved IGN linking and teleport triggers for Discord."""

"""Detection & Moderation Adapter."""

"""Chatgate: abuse-resistant streaming chat gateway."""

"""HTTP surface for kbchat."""

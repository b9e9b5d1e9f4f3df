"""Own-profile reads and edits, including the avatar."""

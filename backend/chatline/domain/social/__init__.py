"""Friend graph: requests, friendships and user search."""

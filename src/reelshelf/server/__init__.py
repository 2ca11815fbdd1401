"""RPC server hosted by the Reelshelf daemon."""

"""Player sampling and client-side lesson tracking."""

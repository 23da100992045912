"""Control-plane core: configuration resolution, validation and lifecycle."""

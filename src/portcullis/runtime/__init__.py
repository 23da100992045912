"""Runtime: main loop, background monitor, transaction log."""

"""Frame-to-frame stabilization of measurements."""

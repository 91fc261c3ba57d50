"""Assembly phases: one per descriptor section, applied in a fixed order."""

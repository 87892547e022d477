"""Full-population traversal and field-level change detection."""

"""Domain layer: records, change detection, matching and reconciliation rules."""

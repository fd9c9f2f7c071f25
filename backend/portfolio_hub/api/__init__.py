"""HTTP surface for the aggregation engine."""

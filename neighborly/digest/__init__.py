"""Weekly community digest: aggregation, grouping, synthesis, linking, rendering, dispatch."""

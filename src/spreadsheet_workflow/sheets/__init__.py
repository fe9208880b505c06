"""Sheet views: grid model, single sheet, 3D stack, aggregation and LLM pipe."""

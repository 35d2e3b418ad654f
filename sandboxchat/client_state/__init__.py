"""Client-side state core: workspace registry, conversation store, event driver."""

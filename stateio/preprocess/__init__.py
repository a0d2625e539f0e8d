"""Raw data adapters, share computation and the state table pipeline."""

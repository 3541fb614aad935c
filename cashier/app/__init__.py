"""Application layer: billing domain and service wiring."""

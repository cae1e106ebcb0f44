"""Package registries and version resolution against them."""

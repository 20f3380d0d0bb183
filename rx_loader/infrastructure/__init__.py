"""Infrastructure for rx-loader: configuration, settings and logging."""

"""Adapters for rx-loader: source ingesters and storage backends."""

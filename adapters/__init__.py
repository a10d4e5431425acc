"""Infrastructure adapters: storage backends and the HTTP trigger."""

"""HTTP application layer: app factories, lifespan and server runner."""

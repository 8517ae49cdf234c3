"""Runtime layer: domain model, storage, events, supervision and HTTP API."""

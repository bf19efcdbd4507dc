"""Infrastructure: engine binding and telemetry."""

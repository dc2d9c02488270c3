"""Infrastructure layers: runtime engines and telemetry."""

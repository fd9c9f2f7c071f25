"""Cross-cutting helpers: errors, logging, telemetry."""

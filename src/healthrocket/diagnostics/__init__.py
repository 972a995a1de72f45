"""Live-backend diagnostics: integrity checks, test suites, probes and timing."""

"""Decision core: fingerprinting, guardrails, validation and orchestration."""

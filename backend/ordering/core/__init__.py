"""Settings, logging, security and the base domain error."""

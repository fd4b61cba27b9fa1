"""HTTP/WebSocket API for brprelay."""

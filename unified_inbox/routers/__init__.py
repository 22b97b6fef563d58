"""HTTP routers for webhooks, scheduled sync and the inbox listing."""

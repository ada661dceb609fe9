"""OAuth 2.0 grant processing and token issuance."""

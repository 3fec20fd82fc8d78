"""Microsoft Graph proxy for Teams administration and message statistics."""

"""Browser automation for the remote content-generation web app."""

"""Core building blocks: settings and the base exception."""

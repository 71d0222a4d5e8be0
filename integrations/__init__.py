"""External protocol and payment integrations."""

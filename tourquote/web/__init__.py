"""HTTP surface for tourquote."""

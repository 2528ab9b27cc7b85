"""Natural-language understanding: intent classification and action projection."""

"""Pure domain rules with no database access."""

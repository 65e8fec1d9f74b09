"""Package version, kept apart so errors can embed it without import cycles."""

VERSION = "0.3.0"

"""Root conftest: lets pytest import fossil_delta from a source checkout."""

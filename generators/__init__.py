"""Demo/seed data builders and the JSON dataset cache."""

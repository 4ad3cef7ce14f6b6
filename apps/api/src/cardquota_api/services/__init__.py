"""Domain services for the card quota API."""

"""Campus helpdesk ticketing API."""

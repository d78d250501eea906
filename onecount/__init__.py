"""Receipt splitting and bill archive service."""

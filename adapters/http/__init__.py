"""FastAPI trigger endpoint for the pattern analysis pipeline."""

"""Domain models and collaborator protocols shared by every digest stage."""

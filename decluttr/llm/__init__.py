"""Language-model collaborator (Gemini)."""

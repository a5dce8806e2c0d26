"""API routes for Code Revolver."""

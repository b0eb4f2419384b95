"""MediTech - Patient records (PHI, encrypted at rest)."""

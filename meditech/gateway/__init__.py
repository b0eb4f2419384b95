"""MediTech - API gateway: security middleware and RBAC."""

"""Role-based authorization and approval workflow for high-risk commands."""

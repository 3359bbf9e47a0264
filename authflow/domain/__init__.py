"""
Domain layer: schemas and collaborator interfaces.
"""

"""Library App - Utilities

Validation helpers shared by the API models, the services and the CLI:
- ISBN normalisation
- e-mail / username checks
- CLI output rendering
"""

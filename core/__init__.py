# =============================================================================
# core/ - Business Logic Package
# =============================================================================
# This package contains framework-agnostic business logic:
# - constants.py: Credits, room types, styles, plans and top-up packages
# - models/: Pydantic schemas for data validation
# - services/: Staging, versions, credits, teams, billing and email
#
# Code in this package should NOT import from FastAPI routers. Services
# raise app.exceptions errors, which the API turns into responses.
# =============================================================================

# =============================================================================
# app/ - Stager API Web Layer
# =============================================================================
# HTTP surface of the virtual staging service:
# - main.py: FastAPI app, CORS, exception handlers, router mounting
# - config.py: Settings loaded from the environment / .env
# - auth/: Supabase access token verification
# - routers/: Endpoints grouped by feature (staging, team, billing, ...)
# - exceptions.py: Error types and their JSON responses
#
# Routers validate input and call core/services; they hold no business rules.
# =============================================================================

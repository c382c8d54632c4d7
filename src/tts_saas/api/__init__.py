"""
FastAPI REST API Layer for tts-saas.

    - routes.py: Generation, history, account, catalogue, health, metrics
    - schemas.py: Response models
    - dependencies.py: Settings and service container providers
"""

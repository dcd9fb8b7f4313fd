# ABOUTME: Utilities package initialization for the devenv operator
# ABOUTME: Contains the API client, ownership helpers, and logging

"""
devenv operator utilities

Shared utilities:
    - client.py: Kubernetes API client with retry logic
    - ownership.py: Owner references for cascading deletion
    - logging.py: Structured logging with correlation IDs and auditing
"""

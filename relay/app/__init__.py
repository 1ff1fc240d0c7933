"""
Jira Relay
==========

Relays Jira Cloud REST calls for a browser-hosted Figma plugin that cannot
send Atlassian credentials across origins itself.

Modules:
    - main.py   : FastAPI application factory and entry point
    - config.py : Environment-driven settings
    - models.py : Request and outcome models
    - proxy/    : The /api/jira-proxy endpoint
"""

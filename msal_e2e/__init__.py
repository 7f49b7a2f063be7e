"""
Browser end-to-end harness for the MSAL ADFS sample application.

Drives the sample app through Playwright and checks the token cache it
leaves in localStorage:
    login-redirect   - sign in by full-page redirect
    login-popup      - sign in through a popup window
    acquire-*        - acquire a token by redirect, popup or silently

Run ``msal-e2e --help`` or ``python -m msal_e2e.runner`` for the CLI.
"""

"""mail/ -- Outbound notifications (password reset email, SMS stub) for AuthGate.

Layer rule: mail/ imports only stdlib + third-party libraries. auth/ talks to
it through the notifier methods (send_reset_password, send_sms); api/main.py
builds the concrete dispatcher.
"""

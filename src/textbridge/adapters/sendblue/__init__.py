"""
Sendblue adapter for textbridge.

Receives iMessage/SMS from Sendblue by polling and by webhook, forwards them to
the chat backend and relays replies back through the Sendblue API.
"""

__version__ = "0.1.0"

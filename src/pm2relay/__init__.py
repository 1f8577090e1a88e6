"""
PM2 Log Relay
Forwards live pm2 log output to a Discord webhook.
"""

__version__ = "0.1.0"

"""
VPS Bootstrap

Server setup tool for fresh Debian/Ubuntu VPS instances:
  • Safe swap migration (auto / set / increase / decrease)
  • Base package installation
  • Timezone configuration
  • Network tuning (BBR + fq_codel)
  • journald log limits

Note: Run with root privileges.
"""

APP_NAME: str = "VPS Bootstrap"
VERSION: str = "2.4.0"
LOGGER_NAME: str = "vps_bootstrap"

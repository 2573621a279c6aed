"""Default configuration template.

This template is written to ~/.config/miroir/config.toml
when running `miroir config init`.
"""

CONFIG_TEMPLATE = """\
# miroir configuration

[defaults]
# data_dir = "~/.local/share/miroir"
timezone = "UTC"
past_days = 30
future_days = 90
timeout = 30

# Add your Microsoft 365 accounts below.
#
# [accounts.work]
# client_id = "xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"
# tenant_id = "organizations"
# auth_flow = "devicecode"
# hint = "me@example.com"
#
# Get client_id from your Azure app registration. The app needs the
# delegated permissions Calendars.ReadWrite, Contacts.Read and User.Read.
# Use auth_flow = "authcode" to sign in through a browser on this machine.
#
# After adding an account, authenticate with:
#   miroir config auth --account work
"""

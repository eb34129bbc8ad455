"""seatwise cross-platform identity reconciliation.

Pulls user accounts from SaaS platforms (Google Workspace, Slack, GitHub,
Zoom, AWS IAM), links them into one identity per person and tenant, and
derives ghost-account, security-risk and license-waste signals from the
reconciled snapshot.
"""

__version__ = "0.4.0"

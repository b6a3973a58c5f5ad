"""
Groups App - Expense-sharing groups

A group owns its ledger (currency, ledger version, approval setting) and
tracks who belongs to it. Memberships are deactivated rather than deleted so
that historical expenses keep pointing at real members.

Architecture:
- Models: Group, GroupMembership
- Services: group_management, membership_management, role_management
- Views: RESTful API with ViewSets
- Exceptions: Domain exception hierarchy (services/exceptions.py)
"""

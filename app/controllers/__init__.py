"""
Controllers
===========
Stateful owners of derived snapshots: live counter, dashboard, archive manager.
"""

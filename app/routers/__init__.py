"""
routers/ — FastAPI route modules.

integrations.py triggers ERP syncs, inventory.py serves snapshots and
alerts. Both stay thin: services/ does the work.
"""

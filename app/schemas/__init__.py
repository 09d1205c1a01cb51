"""
schemas/ — Pydantic request/response models for the sync and inventory API

sync.py covers the Metakocka integration routes, inventory.py the snapshot
and alert routes, errors.py the shared error envelope.
"""

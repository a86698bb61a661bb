"""Identity access package

Holds the pieces an auth service must host to accept migrated accounts:
password hash formats, identity mapping and the target store adapter.
"""
